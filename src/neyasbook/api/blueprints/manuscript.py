"""Manifest, chapter content and entity endpoints (storage pass-through)."""
from flask import Blueprint, current_app, g, jsonify
import logging

from ...models import EntityProfile, Manifest, Suggestion
from ...text_projection import apply_suggestion
from ..decorators import get_json_body, require_project_id

logger = logging.getLogger(__name__)

manuscript_bp = Blueprint('manuscript', __name__)


# --- Manifest ---

@manuscript_bp.route('/manifest', methods=['GET'])
@require_project_id
def get_manifest():
    manifest = current_app.project_store.load_manifest(g.project_id)
    return jsonify(manifest.to_json_dict())


@manuscript_bp.route('/manifest', methods=['POST'])
@require_project_id
def save_manifest():
    manifest = Manifest.model_validate(get_json_body())
    current_app.project_store.save_manifest(g.project_id, manifest)
    return jsonify({"success": True})


# --- Chapter content ---

@manuscript_bp.route('/content/<chapter_id>', methods=['GET'])
@require_project_id
def get_content(chapter_id):
    return jsonify(current_app.project_store.load_chapter(g.project_id, chapter_id))


@manuscript_bp.route('/content/<chapter_id>', methods=['POST'])
@require_project_id
def save_content(chapter_id):
    current_app.project_store.save_chapter(g.project_id, chapter_id, get_json_body())
    return jsonify({"success": True})


@manuscript_bp.route('/content/<chapter_id>', methods=['DELETE'])
@require_project_id
def delete_content(chapter_id):
    current_app.project_store.delete_chapter(g.project_id, chapter_id)
    return jsonify({"success": True})


@manuscript_bp.route('/content/<chapter_id>/suggestion', methods=['POST'])
@require_project_id
def accept_suggestion(chapter_id):
    """Apply an accepted Archie suggestion to the stored chapter."""
    suggestion = Suggestion.model_validate(get_json_body())
    store = current_app.project_store
    doc = store.load_chapter(g.project_id, chapter_id)

    updated = apply_suggestion(doc, suggestion)
    store.save_chapter(g.project_id, chapter_id, updated)
    logger.info(f"Applied suggestion to chapter {chapter_id} of {g.project_id}")
    return jsonify({"success": True, "content": updated})


# --- Entities ---

@manuscript_bp.route('/entities', methods=['GET'])
@require_project_id
def list_entities():
    index = current_app.project_store.load_index(g.project_id)
    return jsonify([entry.to_json_dict() for entry in index])


@manuscript_bp.route('/entities/<entity_id>', methods=['GET'])
@require_project_id
def get_entity(entity_id):
    profile = current_app.project_store.load_profile(g.project_id, entity_id)
    return jsonify(profile.to_json_dict())


@manuscript_bp.route('/entities/<entity_id>', methods=['POST'])
@require_project_id
def save_entity(entity_id):
    data = get_json_body()
    data['id'] = entity_id
    data.setdefault('name', entity_id)
    profile = EntityProfile.model_validate(data)

    store = current_app.project_store
    store.save_profile(g.project_id, profile)
    store.upsert_index_entry(g.project_id, profile)
    return jsonify({"success": True})
