# Command line entry point: mint dev certificates, check them, print webhook configs
import argparse, json, logging
from pathlib import Path
from typing import Any, List

from webhook_tools import config
from webhook_tools.certs.authority import verify_issued_by
from webhook_tools.certs.dev_cert import create_certificates
from webhook_tools.certs.errors import CertificateError
from webhook_tools.registration import Webhook, webhook_configuration, webhook_endpoint

logger = logging.getLogger(__name__)


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def _deny_all(_request):
    return {"allowed": False}


def cmd_issue(args) -> int:
    certs = create_certificates(
        args.san or [],
        name=args.name,
        cert_dir=args.out,
        key_bits=args.key_bits,
        common_name=args.cn,
        organizations=args.org or [],
    )
    print(f"CA certificate: {certs.ca_file}")
    print(f"Certificate:    {certs.cert_file}")
    print(f"Private key:    {certs.key_file}")
    return 0


def cmd_verify(args) -> int:
    ca_pem = Path(args.ca).read_text(encoding="ascii")
    cert_pem = Path(args.cert).read_text(encoding="ascii")
    if verify_issued_by(cert_pem, ca_pem):
        print(f"OK: {args.cert} was issued by {args.ca}")
        return 0
    print(f"FAIL: {args.cert} was not issued by {args.ca}")
    return 1


def cmd_webhook_config(args) -> int:
    ca_pem = Path(args.ca).read_text(encoding="ascii")
    # the handler is never called here, only the registration fields matter
    webhook = Webhook(name=args.name, path=args.path, handler=_deny_all, mutating=args.mutating)
    endpoint = webhook_endpoint(args.host, args.port, args.path)
    body = webhook_configuration(webhook, endpoint, ca_pem)

    if args.json:
        _write_json(Path(args.json), body)
        print(f"Wrote JSON: {args.json}")
    else:
        print(json.dumps(body, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    settings = config.load_settings()

    p = argparse.ArgumentParser(prog="webhook-tools")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    issue = sub.add_parser("issue", help="Create a CA and a server certificate signed by it")
    issue.add_argument("--name", default=settings.ca_name, help="CA display name")
    issue.add_argument("--cn", help="Certificate common name (defaults to --name)")
    issue.add_argument("--org", action="append", help="Organization, may be repeated")
    issue.add_argument("--san", action="append", help="Extra DNS name or IP address, may be repeated")
    issue.add_argument("--out", default=settings.cert_dir, help="Output directory (default: a new temp dir)")
    issue.add_argument("--key-bits", type=int, default=settings.key_bits)
    issue.set_defaults(func=cmd_issue)

    verify = sub.add_parser("verify", help="Check that a certificate was signed by a CA")
    verify.add_argument("--ca", required=True)
    verify.add_argument("--cert", required=True)
    verify.set_defaults(func=cmd_verify)

    hook = sub.add_parser("webhook-config", help="Print the webhook configuration for a dev endpoint")
    hook.add_argument("--name", required=True)
    hook.add_argument("--path", required=True)
    hook.add_argument("--ca", required=True, help="CA certificate PEM used as the caBundle")
    hook.add_argument("--host", default=settings.advertise_host)
    hook.add_argument("--port", type=int, default=settings.port)
    hook.add_argument("--mutating", action="store_true")
    hook.add_argument("--json")
    hook.set_defaults(func=cmd_webhook_config)

    return p


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except CertificateError as e:
        logger.debug("Certificate operation failed", exc_info=True)
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
