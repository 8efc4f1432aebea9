"""
Recommendation routes for API endpoints.
"""
import logging

from flask import Blueprint, jsonify, request
from pydantic import ValidationError

from suggestion_service import (
    CacheKey,
    ExternalRecommenderApiException,
    GenerationInProgressError,
    MalformedAddressError,
    RecommendationService,
    RecommenderNotFoundError,
    SyncProtocolError,
)
from suggestion_service.actions import ERROR_NOT_FOUND
from suggestion_service.evaluation import EvaluationConfig
from suggestion_service.models import LabeledSample, Recommender

logger = logging.getLogger(__name__)


def _cache_key(project: str):
    """Session owner from the uid cookie, data owner from ?user= (defaults to the session owner)."""
    uid = request.cookies.get("uid")
    if not uid:
        return None
    return CacheKey(session_owner=uid, data_owner=request.args.get("user") or uid, project=project)


def _login_required():
    return jsonify({"error": "Login required"}), 401


def create_recommendation_routes(service: RecommendationService,
                                 default_evaluation: EvaluationConfig) -> Blueprint:
    """Create recommendation routes blueprint."""
    bp = Blueprint('recommendation', __name__, url_prefix='/api')

    # ------------------------------------------------------------------
    # Predictions
    # ------------------------------------------------------------------

    @bp.route('/projects/<project>/predictions', methods=['GET'])
    def get_predictions(project):
        """Snapshot of the active generation with the VIDs of offered suggestions."""
        key = _cache_key(project)
        if key is None:
            return _login_required()

        predictions = service.get_predictions(key)
        show_all = request.args.get('all', '').lower() == 'true' or service.config.show_all_predictions
        data = predictions.to_dict(visible_only=not show_all)
        data["switch_ready"] = service.cache.get_incoming(key) is not None
        data["in_progress"] = service.cache.is_generation_in_progress(key)
        return jsonify(data)

    @bp.route('/projects/<project>/predictions/refresh', methods=['POST'])
    def refresh_predictions(project):
        key = _cache_key(project)
        if key is None:
            return _login_required()
        try:
            service.schedule_prediction_run(key)
        except GenerationInProgressError as e:
            return jsonify({"error": "Prediction run in progress", "message": str(e)}), 409
        return jsonify({"status": "scheduled"}), 202

    @bp.route('/projects/<project>/predictions/switch', methods=['POST'])
    def switch_predictions(project):
        key = _cache_key(project)
        if key is None:
            return _login_required()
        switched = service.switch_predictions(key)
        return jsonify({
            "switched": switched,
            "generation": service.get_predictions(key).generation,
        })

    @bp.route('/projects/<project>/documents/<document>/suggestions', methods=['GET'])
    def document_suggestions(project, document):
        """
        Suggestions of one document grouped by position.

        Query parameters:
            - layer: layer id (required)
            - begin, end: optional window, -1 = unbounded
            - all: include hidden and already handled suggestions
        """
        key = _cache_key(project)
        if key is None:
            return _login_required()

        layer_id = request.args.get('layer', type=int)
        if layer_id is None:
            return jsonify({"error": "Missing layer", "message": "Query parameter 'layer' is required"}), 400
        show_all = request.args.get('all', '').lower() == 'true' or service.config.show_all_predictions
        groups = service.get_suggestion_groups(
            key,
            document,
            layer_id,
            window_begin=request.args.get('begin', -1, type=int),
            window_end=request.args.get('end', -1, type=int),
            show_all=show_all,
        )
        return jsonify({
            "document": document,
            "generation": service.get_predictions(key).generation,
            "groups": groups,
            "count": len(groups),
        })

    @bp.route('/projects/<project>/events', methods=['POST'])
    def project_event(project):
        """
        Notification from the annotation storage that cached predictions are outdated.

        JSON body:
            - type: document-changed | document-removed | layer-changed
            - document: affected document (document events)
        """
        data = request.get_json(silent=True) or {}
        event = data.get('type')
        document = data.get('document')
        if event == 'document-changed':
            service.on_document_changed(project, document)
        elif event == 'document-removed' and document:
            service.on_document_removed(project, document)
        elif event == 'layer-changed':
            service.on_layer_changed(project)
        else:
            return jsonify({"error": "Invalid event", "message": f"Unsupported event [{event}]"}), 400
        return jsonify({"status": "ok"})

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    @bp.route('/projects/<project>/suggestions/<vid>/<action>', methods=['POST'])
    def suggestion_action(project, vid, action):
        """Accept, reject, skip or scroll to a suggestion."""
        key = _cache_key(project)
        if key is None:
            return _login_required()

        data = request.get_json(silent=True) or {}
        try:
            result = service.handle_action(key, action, vid, reason=data.get('reason'))
        except MalformedAddressError as e:
            return jsonify({"error": "Malformed suggestion address", "message": str(e)}), 400
        except ValueError as e:
            return jsonify({"error": "Unknown action", "message": str(e)}), 400

        if result.success:
            return jsonify(result.to_dict())
        status_code = 404 if result.error == ERROR_NOT_FOUND else 422
        return jsonify(result.to_dict()), status_code

    @bp.route('/projects/<project>/suggestions/<vid>/details', methods=['GET'])
    def suggestion_details(project, vid):
        key = _cache_key(project)
        if key is None:
            return _login_required()
        try:
            details = service.lookup_details(key, vid, query=request.args.get('query'))
        except MalformedAddressError as e:
            return jsonify({"error": "Malformed suggestion address", "message": str(e)}), 400
        return jsonify({
            "vid": vid,
            "details": [d.to_dict() for d in details],
            "count": len(details),
        })

    # ------------------------------------------------------------------
    # Recommenders
    # ------------------------------------------------------------------

    @bp.route('/projects/<project>/recommenders', methods=['GET'])
    def list_recommenders(project):
        recommenders = service.list_recommenders(project)
        return jsonify({
            "recommenders": [r.model_dump(mode='json') for r in recommenders],
            "count": len(recommenders),
        })

    @bp.route('/recommenders', methods=['POST'])
    def register_recommender():
        try:
            recommender = Recommender.model_validate(request.get_json(silent=True) or {})
            service.register_recommender(recommender)
        except ValidationError as e:
            return jsonify({"error": "Invalid recommender", "message": str(e)}), 400
        except ValueError as e:
            return jsonify({"error": "Unsupported recommender", "message": str(e)}), 400
        return jsonify(recommender.model_dump(mode='json')), 201

    @bp.route('/recommenders/<int:recommender_id>', methods=['DELETE'])
    def remove_recommender(recommender_id):
        try:
            service.remove_recommender(recommender_id)
        except RecommenderNotFoundError as e:
            return jsonify({"error": "Not found", "message": str(e)}), 404
        return jsonify({"status": "ok"})

    @bp.route('/recommenders/<int:recommender_id>/status', methods=['GET'])
    def recommender_status(recommender_id):
        user = request.args.get('user') or request.cookies.get('uid')
        try:
            status = service.recommender_status(recommender_id, user)
        except RecommenderNotFoundError as e:
            return jsonify({"error": "Not found", "message": str(e)}), 404
        except ExternalRecommenderApiException as e:
            logger.warning(f"Status of recommender [{recommender_id}] unavailable: {e}")
            return jsonify({
                "error": "Remote recommender unavailable",
                "message": str(e),
                "status_code": e.status_code,
            }), 502
        except SyncProtocolError as e:
            return jsonify({"error": "Invalid remote response", "message": str(e)}), 502
        return jsonify(status)

    @bp.route('/recommenders/<int:recommender_id>/evaluate', methods=['POST'])
    def evaluate_recommender(recommender_id):
        """
        Learning curve of a recommender.

        JSON body (all optional):
            - samples: list of {document, begin, end, text, label}; defaults to the
              confirmed annotations of ?user= (or the uid cookie)
            - train_fraction, step, min_samples, shuffle, seed, ignore_label
        """
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Invalid evaluation request", "message": "Expected a JSON object"}), 400
        try:
            config = EvaluationConfig.from_dict({
                "train_fraction": default_evaluation.train_fraction,
                "step": default_evaluation.step,
                "min_samples": default_evaluation.min_samples,
                "shuffle": default_evaluation.shuffle,
                "seed": default_evaluation.seed,
                **{k: v for k, v in data.items() if k != 'samples'},
            })
            if 'samples' in data:
                samples = [
                    LabeledSample(s['document'], int(s['begin']), int(s['end']), s.get('text', ''), s.get('label'))
                    for s in data['samples']
                ]
            else:
                user = request.args.get('user') or request.cookies.get('uid')
                if not user:
                    return _login_required()
                samples = service.collect_samples(recommender_id, user)
            run = service.evaluate(recommender_id, samples, config)
        except RecommenderNotFoundError as e:
            return jsonify({"error": "Not found", "message": str(e)}), 404
        except (KeyError, TypeError, ValueError) as e:
            return jsonify({"error": "Invalid evaluation request", "message": str(e)}), 400

        if run.is_skipped:
            return jsonify({
                "skipped": True,
                "message": str(run.skipped),
                "results": [],
            })
        results = run.results()
        return jsonify({
            "skipped": False,
            "results": [r.to_dict() for r in results],
            "count": len(results),
        })

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    @bp.route('/session/close', methods=['POST'])
    def close_session():
        uid = request.cookies.get("uid")
        if not uid:
            return _login_required()
        service.on_session_closed(uid)
        return jsonify({"status": "ok"})

    return bp
