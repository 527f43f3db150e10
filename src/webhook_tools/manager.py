# Prepares the webhook server: certificates, registration and the Flask app.
#
# In development mode the server runs outside the cluster, so it mints its own
# CA and serving certificate and registers each webhook against the advertised
# host with that CA as the bundle. Otherwise certificates are expected in cert_dir.

from __future__ import annotations
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from flask import Flask

from webhook_tools.certs.dev_cert import CERT_FILE, KEY_FILE, create_certificates
from webhook_tools.config import Settings
from webhook_tools.kube_client import KubeClient
from webhook_tools.registration import Webhook, webhook_endpoint
from webhook_tools.server import create_app

logger = logging.getLogger(__name__)


@dataclass
class Manager:
    app: Flask
    settings: Settings
    cert_file: Path
    key_file: Path
    ca_certificate: Optional[str] = None

    def run(self) -> None:
        self.app.run(
            host=self.settings.bind_host,
            port=self.settings.port,
            ssl_context=(str(self.cert_file), str(self.key_file)),
        )


def register_webhooks(client: KubeClient, settings: Settings, webhooks: List[Webhook], ca_certificate: str) -> None:
    for webhook in webhooks:
        endpoint = webhook_endpoint(settings.advertise_host, settings.port, webhook.path)
        try:
            client.register(webhook, endpoint, ca_certificate)
        except Exception:
            logger.exception("Unable to register webhook %s", webhook.name)
            raise


def prepare_manager(settings: Settings, webhooks: List[Webhook], kube_client: Optional[KubeClient] = None) -> Manager:
    app = create_app(webhooks)

    if not settings.development_mode:
        if settings.cert_dir is None:
            raise RuntimeError("WEBHOOK_CERT_DIR must be set outside development mode.")
        return Manager(app, settings, settings.cert_dir / CERT_FILE, settings.cert_dir / KEY_FILE)

    try:
        certs = create_certificates(
            [settings.advertise_host],
            name=settings.ca_name,
            cert_dir=settings.cert_dir,
            key_bits=settings.key_bits,
        )
    except Exception:
        logger.exception("Unable to create certificates")
        raise

    client = kube_client or KubeClient.from_settings(settings)
    register_webhooks(client, settings, webhooks, certs.ca_certificate)

    return Manager(app, settings, certs.cert_file, certs.key_file, certs.ca_certificate)
