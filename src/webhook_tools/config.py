# config.py (import this early; the CLI and manager read settings from here)
from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv, find_dotenv

from webhook_tools.certs.keys import DEFAULT_KEY_BITS

# Loads ${workspace}/.env if present; doesn't overwrite existing env by default
load_dotenv(find_dotenv(usecwd=True), override=False)

DEFAULT_PORT = 9443
DEFAULT_CA_NAME = "webhook-tools"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"", "0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    development_mode: bool = False
    advertise_host: str = "localhost"
    bind_host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    cert_dir: Optional[Path] = None
    ca_name: str = DEFAULT_CA_NAME
    key_bits: int = DEFAULT_KEY_BITS
    kubeconfig: Optional[Path] = None
    kube_api_server: Optional[str] = None
    kube_token: Optional[str] = None
    kube_ca_file: Optional[str] = None


def _bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ
    cert_dir = env.get("WEBHOOK_CERT_DIR")
    # KUBECONFIG may list several files; the first one is used
    kubeconfig = (env.get("KUBECONFIG") or "").split(os.pathsep)[0]
    return Settings(
        development_mode=_bool(env, "WEBHOOK_DEVELOPMENT_MODE", False),
        advertise_host=env.get("WEBHOOK_ADVERTISE_HOST") or "localhost",
        bind_host=env.get("WEBHOOK_BIND_HOST") or "0.0.0.0",
        port=_int(env, "WEBHOOK_PORT", DEFAULT_PORT),
        cert_dir=Path(cert_dir) if cert_dir else None,
        ca_name=env.get("WEBHOOK_CA_NAME") or DEFAULT_CA_NAME,
        key_bits=_int(env, "WEBHOOK_KEY_BITS", DEFAULT_KEY_BITS),
        kubeconfig=Path(kubeconfig) if kubeconfig else None,
        kube_api_server=env.get("KUBE_API_SERVER") or None,
        kube_token=env.get("KUBE_TOKEN") or None,
        kube_ca_file=env.get("KUBE_CA_FILE") or None,
    )
