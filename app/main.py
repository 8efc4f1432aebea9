import sys
from pathlib import Path
from typing import Optional

# Import configuration management
sys.path.append(str(Path(__file__).parent.parent))
from config_manager import ConfigManager

from flask import Flask, jsonify, request
from werkzeug.middleware.proxy_fix import ProxyFix

from suggestion_service import InMemoryAnnotationStorage, ServiceConfig, setup_logging
from suggestion_service.corpus import load_corpus
from suggestion_service.evaluation import EvaluationConfig
from suggestion_service.recommenders import EngineRegistry, build_default_registry
from app.recommendation.factory import create_recommendation_module


def create_app(
    config_manager: Optional[ConfigManager] = None,
    storage=None,
    engines: Optional[EngineRegistry] = None,
    corpus_path: Optional[str] = None,
    configure_logging: bool = True,
) -> Flask:
    """Build the Flask application.

    Args:
        config_manager: Configuration source (defaults to recommender_config.json + env)
        storage: Annotation storage collaborator (defaults to an in-memory storage)
        engines: Engine registry (defaults to string-matching + external engines)
        corpus_path: Optional corpus file loaded into the in-memory storage
        configure_logging: Whether to install the queue-based logging setup
    """
    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------
    config_manager = config_manager or ConfigManager()
    app_config = config_manager.get_app_config()
    recommender_config = config_manager.get_recommender_config()
    external_config = config_manager.get_external_config()
    evaluation_settings = config_manager.get_evaluation_config()

    if configure_logging:
        setup_logging(debug=config_manager.get_logging_config().debug or app_config.debug)

    app = Flask(__name__)
    app.wsgi_app = ProxyFix(
        app.wsgi_app,
        x_proto=1,     # trust 1 hop for X-Forwarded-Proto
        x_host=1,      # trust 1 hop for X-Forwarded-Host
        x_prefix=1)    # honour X-Forwarded-Prefix

    # -------------------------------------------------------------------------
    # Recommendation module
    # -------------------------------------------------------------------------
    corpus = None
    if storage is None:
        storage = InMemoryAnnotationStorage()
        if corpus_path:
            corpus = load_corpus(corpus_path)
            corpus.populate(storage)

    if engines is None:
        engines = build_default_registry(
            connect_timeout=external_config.connect_timeout,
            read_timeout=external_config.read_timeout,
            verify_ssl=external_config.verify_ssl,
        )

    recommendation_module = create_recommendation_module(
        storage=storage,
        engines=engines,
        service_config=ServiceConfig(
            max_workers=recommender_config.max_workers,
            auto_switch_predictions=recommender_config.auto_switch_predictions,
            show_all_predictions=recommender_config.show_all_predictions,
            max_suggestions_per_document=recommender_config.max_suggestions_per_document,
        ),
        evaluation_config=EvaluationConfig(
            train_fraction=evaluation_settings.train_fraction,
            step=evaluation_settings.step,
            min_samples=evaluation_settings.min_samples,
            shuffle=evaluation_settings.shuffle,
            seed=evaluation_settings.seed,
        ),
    )
    service = recommendation_module["service"]
    if corpus is not None:
        for recommender in corpus.recommenders:
            service.register_recommender(recommender)

    app.register_blueprint(recommendation_module["blueprint"])
    app.extensions["recommendation_service"] = service
    app.config["APP_CONFIG"] = app_config

    # -------------------------------------------------------------------------
    # Routes
    # -------------------------------------------------------------------------
    @app.route("/health", methods=["GET"])
    def health():
        """Liveness probe."""
        return jsonify({
            "status": "ok",
            "path": request.path,
            "recommenders": len(service.list_recommenders()),
        })

    return app
