"""
Flask application factory for the Neyasbook backend.
"""
import logging

from flask import Flask, jsonify
from flask_cors import CORS
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from ..chat_service import ChatService
from ..config import Config
from ..errors import NeyasbookError, UpstreamFailure
from ..knowledge_extraction import EntityExtractor, SweepEngine
from ..llm_client import OpenAIChatClient
from ..storage import ProjectStore, create_blob_store

from .blueprints.assistant import assistant_bp
from .blueprints.manuscript import manuscript_bp
from .blueprints.projects import projects_bp

logger = logging.getLogger(__name__)


def _build_llm_client(app: Flask, model: str) -> OpenAIChatClient:
    return OpenAIChatClient(
        model=model,
        api_key=app.config.get('OPENAI_API_KEY'),
        base_url=app.config.get('OPENAI_BASE_URL'),
        timeout=app.config.get('LLM_TIMEOUT', 120),
        max_retries=app.config.get('LLM_MAX_RETRIES', 0),
    )


def create_app(config=None, llm_client=None, sweep_llm_client=None, blob_store=None):
    """
    Create and configure the Flask application.

    Args:
        config: optional mapping of overrides applied on top of ``Config``.
        llm_client: chat model client; built from OPENAI_* settings when omitted.
        sweep_llm_client: sweep model client; built from SWEEP_MODEL when omitted.
        blob_store: storage backend; built from STORAGE_BACKEND when omitted.
    """
    app = Flask(__name__)

    # --- Configuration ---
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    logging.basicConfig(
        level=getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    CORS(app, origins=app.config.get('CORS_ORIGINS', '*'))

    # --- Storage ---
    app.project_store = ProjectStore(blob_store or create_blob_store(app.config))

    # --- LLM clients ---
    # Without an API key the storage endpoints still work; sweep and chat answer 500.
    try:
        if llm_client is None:
            llm_client = _build_llm_client(app, app.config['CHAT_MODEL'])
        if sweep_llm_client is None:
            sweep_llm_client = _build_llm_client(app, app.config['SWEEP_MODEL'])
    except UpstreamFailure as e:
        logger.critical(f"LLM clients could not be initialized: {e}")

    app.sweep_engine = SweepEngine(app.project_store, EntityExtractor(sweep_llm_client)) \
        if sweep_llm_client is not None else None
    app.chat_service = ChatService(app.project_store, llm_client)

    # --- Register Blueprints ---
    app.register_blueprint(projects_bp)
    app.register_blueprint(manuscript_bp)
    app.register_blueprint(assistant_bp)

    @app.route('/health', methods=['GET'])
    def health_check():
        return jsonify({"status": "healthy"})

    @app.route('/usage', methods=['GET'])
    def usage():
        """Token usage and cost per LLM client since the process started."""
        clients = {
            'chat': app.chat_service.llm,
            'sweep': app.sweep_engine.extractor.llm if app.sweep_engine else None,
        }
        by_client = {}
        for name, client in clients.items():
            if client is not None:
                by_client[name] = {**client.get_model_info(), **client.get_cost_summary()}
        total_cost = sum(summary['total_cost'] for summary in by_client.values())
        return jsonify({"total_cost": round(total_cost, 6), "by_client": by_client})

    # --- Error Handlers ---
    @app.errorhandler(NeyasbookError)
    def handle_domain_error(e):
        if e.status_code >= 500:
            logger.error(f"{type(e).__name__}: {e}", exc_info=True)
        else:
            logger.warning(f"{type(e).__name__}: {e}")
        return jsonify({"error": str(e)}), e.status_code

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        logger.warning(f"Invalid request body: {e.error_count()} error(s)")
        details = e.errors(include_url=False, include_context=False, include_input=False)
        return jsonify({"error": "Invalid request body", "details": details}), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(500)
    def handle_internal_server_error(e):
        logger.error(f"Internal Server Error: {e}", exc_info=True)
        return jsonify({"error": "Internal server error"}), 500

    return app


__all__ = ['create_app']
