# Writes a freshly issued development certificate to disk for the HTTPS server
from __future__ import annotations
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from webhook_tools.certs.authority import new_certificate_authority
from webhook_tools.certs.keys import DEFAULT_KEY_BITS

logger = logging.getLogger(__name__)

CERT_FILE = "tls.crt"
KEY_FILE = "tls.key"
CA_FILE = "ca.crt"
FILE_MODE = 0o600
DIR_PREFIX = "webhook-tools-certs-"


@dataclass(frozen=True)
class DevCertificates:
    ca_certificate: str  # PEM of the trust anchor, published as the CA bundle
    cert_dir: Path
    cert_file: Path
    key_file: Path
    ca_file: Path


def _write_private(path: Path, text: str) -> None:
    # chmod after open so an existing file with looser permissions is tightened too
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
    with os.fdopen(fd, "w", encoding="ascii") as f:
        os.chmod(path, FILE_MODE)
        f.write(text)
    logger.debug("Wrote %s", path)


def create_certificates(
    subject_alternative_names: Iterable[str],
    *,
    name: str = "webhook-tools",
    cert_dir: Optional[os.PathLike] = None,
    key_bits: int = DEFAULT_KEY_BITS,
    common_name: Optional[str] = None,
    organizations: Iterable[str] = (),
) -> DevCertificates:
    """Create a CA, issue one leaf for the given SANs and write both to ``cert_dir``.

    When ``cert_dir`` is not given a new temporary directory is used.
    """
    if cert_dir is None:
        directory = Path(tempfile.mkdtemp(prefix=DIR_PREFIX))
    else:
        directory = Path(cert_dir)
        directory.mkdir(parents=True, exist_ok=True)

    ca = new_certificate_authority(name, key_bits=key_bits)
    certificate, key = ca.issue(common_name or name, list(organizations), list(subject_alternative_names))

    out = DevCertificates(
        ca_certificate=ca.certificate_pem,
        cert_dir=directory,
        cert_file=directory / CERT_FILE,
        key_file=directory / KEY_FILE,
        ca_file=directory / CA_FILE,
    )
    _write_private(out.key_file, key)
    _write_private(out.cert_file, certificate)
    _write_private(out.ca_file, ca.certificate_pem)
    logger.info("Development certificates written to %s", directory)
    return out
