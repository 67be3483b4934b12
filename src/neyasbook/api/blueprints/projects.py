from flask import Blueprint, current_app, jsonify

from ...errors import InvalidRequestError
from ...models import entity_id_from_name
from ...storage.project_store import validate_id
from ..decorators import get_json_body

projects_bp = Blueprint('projects', __name__)


@projects_bp.route('/projects', methods=['GET'])
def list_projects():
    projects = current_app.project_store.list_projects()
    return jsonify([project.to_json_dict() for project in projects])


@projects_bp.route('/projects', methods=['POST'])
def create_project():
    data = get_json_body()
    title = (data.get('title') or '').strip()
    # Client-built ids like "neya's-chronicles" are slugged rather than refused
    project_id = entity_id_from_name((data.get('id') or '').strip() or title).strip('-')
    if not project_id:
        raise InvalidRequestError("A project needs an id or a title")
    validate_id(project_id, 'project id')

    project = current_app.project_store.create_project(project_id, title, data.get('description') or '')
    return jsonify({"success": True, "project": project.to_json_dict()})


@projects_bp.route('/projects/<project_id>', methods=['DELETE'])
def delete_project(project_id):
    current_app.project_store.delete_project(project_id)
    return jsonify({"success": True})
