"""Request helpers shared by the blueprints."""
import logging
from functools import wraps

from flask import g, jsonify, request

from ..errors import InvalidRequestError
from ..storage.project_store import validate_id

logger = logging.getLogger(__name__)

PROJECT_HEADER = "x-project-id"


def require_project_id(f):
    """
    Decorator for project-scoped endpoints.
    Reads the x-project-id header and stores it on ``g.project_id``.

    Usage:
        @bp.route('/manifest', methods=['GET'])
        @require_project_id
        def get_manifest():
            manifest = store.load_manifest(g.project_id)
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        project_id = (request.headers.get(PROJECT_HEADER) or "").strip()
        if not project_id:
            logger.warning(f"Rejected {request.method} {request.path}: missing {PROJECT_HEADER}")
            return jsonify({"error": f"Missing {PROJECT_HEADER}"}), 400
        g.project_id = validate_id(project_id, "project id")
        return f(*args, **kwargs)
    return decorated


def get_json_body(expected_type=dict):
    """The parsed JSON body, or InvalidRequestError when it is absent or the wrong shape."""
    data = request.get_json(silent=True)
    if data is None or not isinstance(data, expected_type):
        raise InvalidRequestError(f"Request body must be a JSON {expected_type.__name__}")
    return data
