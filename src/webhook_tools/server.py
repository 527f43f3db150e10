# HTTPS admission webhook server
# Routes:
#   /healthz        -> liveness check
#   <webhook.path>  -> POST AdmissionReview, answered by the webhook's handler

from __future__ import annotations
import logging
from typing import Any, Dict, Iterable

from flask import Flask, request, jsonify

from webhook_tools.registration import Webhook

logger = logging.getLogger(__name__)

ADMISSION_API = "admission.k8s.io/v1"


def _review(response: Dict[str, Any]) -> Dict[str, Any]:
    return {"apiVersion": ADMISSION_API, "kind": "AdmissionReview", "response": response}


def _make_view(webhook: Webhook):
    def view():
        review = request.get_json(silent=True)
        admission = review.get("request") if isinstance(review, dict) else None
        if not isinstance(admission, dict) or "uid" not in admission:
            return "Expected an AdmissionReview with a request.uid", 400

        try:
            result = dict(webhook.handler(admission) or {})
        except Exception as e:
            logger.exception("Webhook %s failed on request %s", webhook.name, admission["uid"])
            result = {"allowed": False, "status": {"code": 500, "message": str(e)}}

        result.setdefault("allowed", False)
        result["uid"] = admission["uid"]
        return jsonify(_review(result))

    return view


def create_app(webhooks: Iterable[Webhook]) -> Flask:
    app = Flask(__name__)

    @app.get("/healthz")
    def healthz():
        return "ok"

    for webhook in webhooks:
        app.add_url_rule(webhook.path, endpoint=webhook.path, view_func=_make_view(webhook), methods=["POST"])

    return app
