"""Sweep and chat endpoints (the LLM-backed part of the API)."""
from flask import Blueprint, Response, current_app, g, jsonify
import logging

from ...errors import UpstreamFailure
from ...models import ChatRequest, ChatTranscript
from ..decorators import get_json_body, require_project_id

logger = logging.getLogger(__name__)

assistant_bp = Blueprint('assistant', __name__)


@assistant_bp.route('/sweep', methods=['POST'])
@require_project_id
def sweep():
    engine = current_app.sweep_engine
    if engine is None:
        raise UpstreamFailure("The sweep model is not configured. Set OPENAI_API_KEY.")
    result = engine.sweep(g.project_id)
    return jsonify({
        "success": True,
        "message": result.message,
        "scanned": result.scanned,
        "skipped": result.skipped,
        "failed": result.failed,
    })


@assistant_bp.route('/chat', methods=['POST'])
@require_project_id
def chat():
    chat_request = ChatRequest.model_validate(get_json_body())
    response = current_app.chat_service.chat_turn(g.project_id, chat_request)
    return jsonify(response)


@assistant_bp.route('/chat/stream', methods=['POST'])
@require_project_id
def chat_stream():
    chat_request = ChatRequest.model_validate(get_json_body())
    frames = current_app.chat_service.stream_turn(g.project_id, chat_request)
    return Response(
        frames,
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )


# --- Chat history ---

@assistant_bp.route('/chat-history', methods=['GET'])
@require_project_id
def get_chat_history():
    transcript = current_app.chat_service.get_transcript(g.project_id)
    return jsonify(transcript.to_json_dict())


@assistant_bp.route('/chat-history', methods=['POST'])
@require_project_id
def save_chat_history():
    transcript = ChatTranscript.model_validate(get_json_body())
    current_app.chat_service.save_transcript(g.project_id, transcript)
    return jsonify({"success": True})


@assistant_bp.route('/chat-history/reset', methods=['POST'])
@require_project_id
def reset_chat_context():
    transcript = current_app.chat_service.reset_context(g.project_id)
    return jsonify({"success": True, "contextStartIndex": transcript.context_start_index})
