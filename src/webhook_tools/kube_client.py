# This file handles the calls to the Kubernetes API server needed to (re)register webhooks

from __future__ import annotations
import base64
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import requests
import yaml

from webhook_tools.config import Settings
from webhook_tools.registration import ADMISSION_REGISTRATION_API, Webhook, webhook_configuration

logger = logging.getLogger(__name__)

TIMEOUT = 30
MAX_ATTEMPTS = 10

VALIDATING = "validatingwebhookconfigurations"
MUTATING = "mutatingwebhookconfigurations"

DEFAULT_KUBECONFIG = Path.home() / ".kube" / "config"


def _retry_after(value: Optional[str]) -> int:
    # Retry-After may also be an HTTP date; wait the minimum then
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 1


def _named(entries, name: Optional[str], kind: str) -> Dict[str, Any]:
    for entry in entries or []:
        if entry.get("name") == name:
            return entry.get(kind) or {}
    raise RuntimeError(f"No {kind} named {name!r} in kubeconfig.")


def _data_file(data: str, suffix: str) -> str:
    """Write base64 kubeconfig data (certificate-authority-data etc.) to a private temp file."""
    fd, path = tempfile.mkstemp(prefix="webhook-tools-kube-", suffix=suffix)
    with os.fdopen(fd, "wb") as f:
        f.write(base64.b64decode(data))
    return path


def _file_or_data(section: Dict[str, Any], key: str, base: Path, suffix: str) -> Optional[str]:
    if section.get(f"{key}-data"):
        return _data_file(section[f"{key}-data"], suffix)
    if section.get(key):
        # relative paths in a kubeconfig are relative to the kubeconfig itself
        return str(base / section[key])
    return None


class KubeClient:
    def __init__(
        self,
        *,
        server: Optional[str] = None,
        token: Optional[str] = None,
        ca_file: Optional[str] = None,
        client_cert: Optional[Tuple[str, str]] = None,
        insecure: bool = False,
    ):
        self.server = (server or "").rstrip("/")
        self.token = token
        self.ca_file = ca_file
        self.client_cert = client_cert
        self.insecure = insecure

    @classmethod
    def from_kubeconfig(cls, path: Union[str, os.PathLike, None] = None, *, context: Optional[str] = None) -> "KubeClient":
        """Build a client from a kubeconfig file, ~/.kube/config by default.

        Uses the current context unless ``context`` is given, and picks up the
        cluster's server and CA plus the user's token or client certificate.
        """
        path = Path(path) if path is not None else DEFAULT_KUBECONFIG
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise RuntimeError(f"{path} is not a kubeconfig.")

        context_name = context or data.get("current-context")
        ctx = _named(data.get("contexts"), context_name, "context")
        cluster = _named(data.get("clusters"), ctx.get("cluster"), "cluster")
        user = _named(data.get("users"), ctx["user"], "user") if ctx.get("user") else {}

        base = path.parent
        cert = _file_or_data(user, "client-certificate", base, ".crt")
        key = _file_or_data(user, "client-key", base, ".key")
        logger.debug("Using kubeconfig %s, context %s", path, context_name)
        return cls(
            server=cluster.get("server"),
            token=user.get("token"),
            ca_file=_file_or_data(cluster, "certificate-authority", base, ".crt"),
            client_cert=(cert, key) if cert and key else None,
            insecure=bool(cluster.get("insecure-skip-tls-verify")),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "KubeClient":
        """Kubeconfig first (when the file exists), then KUBE_* settings on top."""
        kubeconfig = settings.kubeconfig or DEFAULT_KUBECONFIG
        client = cls.from_kubeconfig(kubeconfig) if Path(kubeconfig).is_file() else cls()

        if settings.kube_api_server:
            client.server = settings.kube_api_server.rstrip("/")
        if settings.kube_token:
            client.token = settings.kube_token
        if settings.kube_ca_file:
            client.ca_file = settings.kube_ca_file
            client.insecure = False
        return client

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _url(self, resource: str, name: Optional[str] = None) -> str:
        if not self.server:
            raise RuntimeError("Missing Kubernetes API server URL (kubeconfig or KUBE_API_SERVER).")
        url = f"{self.server}/apis/{ADMISSION_REGISTRATION_API}/{resource}"
        return f"{url}/{name}" if name else url

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        if self.client_cert:
            kwargs["cert"] = self.client_cert
        # the API server may throttle us, honor Retry-After a bounded number of times
        for _ in range(MAX_ATTEMPTS):
            r = requests.request(
                method,
                url,
                headers=self._headers(),
                verify=False if self.insecure else (self.ca_file or True),
                timeout=TIMEOUT,
                **kwargs,
            )
            if r.status_code != 429:
                return r
            retry_timer = _retry_after(r.headers.get("Retry-After"))
            logger.debug("Throttled on %s %s, retrying in %ss", method, url, retry_timer)
            time.sleep(retry_timer)
        return r

    def delete_webhook_configuration(self, resource: str, name: str) -> None:
        """Delete a webhook configuration; a missing one is not an error."""
        r = self._request("DELETE", self._url(resource, name))
        if r.status_code == 404:
            return
        r.raise_for_status()
        logger.info("Removed existing %s %s", resource, name)

    def create_webhook_configuration(self, resource: str, body: Dict[str, Any]) -> Dict[str, Any]:
        r = self._request("POST", self._url(resource), json=body)
        r.raise_for_status()
        return r.json()

    def register(self, webhook: Webhook, endpoint: str, ca_bundle: str) -> Dict[str, Any]:
        """
        Remove any validating or mutating configuration with this name,
        then create the one matching the webhook.
        """
        self.delete_webhook_configuration(VALIDATING, webhook.name)
        self.delete_webhook_configuration(MUTATING, webhook.name)

        resource = MUTATING if webhook.mutating else VALIDATING
        created = self.create_webhook_configuration(resource, webhook_configuration(webhook, endpoint, ca_bundle))
        logger.info("Registered %s %s -> %s", webhook.kind, webhook.name, endpoint)
        return created
