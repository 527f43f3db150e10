# Describes admission webhooks and builds the objects used to register them
from __future__ import annotations
import base64
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List
from urllib.parse import urlunsplit

ADMISSION_REGISTRATION_API = "admissionregistration.k8s.io/v1"

Handler = Callable[[Dict[str, Any]], Dict[str, Any]]


@dataclass
class Webhook:
    name: str          # fully qualified, e.g. "pods.example.com"
    path: str          # served path, e.g. "/validate-pods"
    handler: Handler   # AdmissionReview request -> response fields
    rules: List[Dict[str, Any]] = field(default_factory=list)
    mutating: bool = False

    @property
    def kind(self) -> str:
        return "MutatingWebhookConfiguration" if self.mutating else "ValidatingWebhookConfiguration"


def webhook_endpoint(host: str, port: int, path: str) -> str:
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    if not path.startswith("/"):
        path = "/" + path
    return urlunsplit(("https", f"{host}:{int(port)}", path, "", ""))


def webhook_configuration(webhook: Webhook, endpoint: str, ca_bundle: str) -> Dict[str, Any]:
    """Build the (Mutating|Validating)WebhookConfiguration for one webhook.

    ``ca_bundle`` is the CA certificate PEM; the API expects it base64 encoded.
    """
    return {
        "apiVersion": ADMISSION_REGISTRATION_API,
        "kind": webhook.kind,
        "metadata": {"name": webhook.name},
        "webhooks": [
            {
                "name": webhook.name,
                "clientConfig": {
                    "url": endpoint,
                    "caBundle": base64.b64encode(ca_bundle.encode("ascii")).decode("ascii"),
                },
                "rules": webhook.rules,
                "failurePolicy": "Fail",
                "sideEffects": "None",
                "admissionReviewVersions": ["v1"],
            }
        ],
    }
