#!/usr/bin/env python3
"""
Dev helper: send a signed test command email to the local MailCommand backend.

Builds a valid inbound webhook for the chosen provider, signs it the way the
vendor would, and POSTs it to /api/inbound/<provider>.

Usage
-----
# /help via Resend, targeting localhost:8000
python scripts/send_test_command.py

# Any command line as the subject
python scripts/send_test_command.py --subject "/memo Groceries" --body "milk, eggs"

# Postmark JSON payload
python scripts/send_test_command.py --provider postmark

# SendGrid form payload, signed with the private half of the webhook key
python scripts/send_test_command.py --provider sendgrid --private-key dev-key.pem

# Print the request without sending it
python scripts/send_test_command.py --dry-run

Environment / .env
------------------
RESEND_WEBHOOK_SECRET     HMAC secret for Resend signatures.
POSTMARK_WEBHOOK_SECRET   Shared token for Postmark.
EMAIL_PROVIDER            Default for --provider (default: resend).
"""

import argparse
import base64
import json
import os
import sys
import textwrap
import time
from pathlib import Path
from urllib.parse import urlencode

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from dotenv import load_dotenv

from mailcommand.services.resend_provider import sign_resend_payload

PROVIDERS = ("resend", "postmark", "sendgrid")


# ---------------------------------------------------------------------------
# Request builders: each returns (body bytes, headers)
# ---------------------------------------------------------------------------

def _build_resend_request(from_email: str, to_address: str, subject: str, text: str, args) -> tuple[bytes, dict]:
    secret = args.secret or os.getenv("RESEND_WEBHOOK_SECRET", "")
    if not secret:
        raise SystemExit("ERROR: set RESEND_WEBHOOK_SECRET or pass --secret")

    body = json.dumps({
        "from": from_email,
        "to": [to_address],
        "subject": subject,
        "text": text,
        "headers": {"Message-ID": f"<dev-{int(time.time())}@localhost>"},
    }).encode()
    return body, {
        "Content-Type": "application/json",
        "resend-signature": sign_resend_payload(body, secret),
    }


def _build_postmark_request(from_email: str, to_address: str, subject: str, text: str, args) -> tuple[bytes, dict]:
    secret = args.secret or os.getenv("POSTMARK_WEBHOOK_SECRET", "")
    if not secret:
        raise SystemExit("ERROR: set POSTMARK_WEBHOOK_SECRET or pass --secret")

    body = json.dumps({
        "MessageID": f"dev-{int(time.time())}",
        "From": from_email,
        "To": to_address,
        "Subject": subject,
        "TextBody": text,
    }).encode()
    return body, {"Content-Type": "application/json", "X-Postmark-Secret": secret}


def _build_sendgrid_request(from_email: str, to_address: str, subject: str, text: str, args) -> tuple[bytes, dict]:
    if not args.private_key:
        raise SystemExit("ERROR: --private-key is required to sign SendGrid webhooks")

    private_key = serialization.load_pem_private_key(Path(args.private_key).read_bytes(), password=None)
    if not isinstance(private_key, ec.EllipticCurvePrivateKey):
        raise SystemExit("ERROR: --private-key must be an EC (P-256) key")

    body = urlencode({
        "from": from_email,
        "to": to_address,
        "subject": subject,
        "text": text,
        "envelope": json.dumps({"from": from_email, "to": [to_address]}),
    }).encode()
    timestamp = str(int(time.time()))
    signature = private_key.sign(timestamp.encode() + body, ec.ECDSA(hashes.SHA256()))
    return body, {
        "Content-Type": "application/x-www-form-urlencoded",
        "X-Twilio-Email-Event-Webhook-Signature": base64.b64encode(signature).decode(),
        "X-Twilio-Email-Event-Webhook-Timestamp": timestamp,
    }


_REQUEST_BUILDERS = {
    "resend": _build_resend_request,
    "postmark": _build_postmark_request,
    "sendgrid": _build_sendgrid_request,
}


def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_command.py",
        description="Send a signed test command email to the MailCommand backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_test_command.py --subject "/status"
              python scripts/send_test_command.py --subject "/extract https://example.com"
              python scripts/send_test_command.py --provider postmark
        """),
    )
    parser.add_argument("--url", default="http://localhost:8000", help="Backend base URL")
    parser.add_argument(
        "--provider",
        default=os.getenv("EMAIL_PROVIDER", "resend"),
        choices=PROVIDERS,
        help="Webhook format and signature scheme (default: resend)",
    )
    parser.add_argument("--from", dest="from_email", default="dev@example.com", help="Sender address")
    parser.add_argument("--to", dest="to_address", default="cmd@inbound.mailcommand.app", help="Recipient address")
    parser.add_argument("--subject", default="/help", help='Subject line (default: "/help")')
    parser.add_argument("--body", default="", help="Plain-text body")
    parser.add_argument("--secret", default=None, help="Override the webhook secret from the environment")
    parser.add_argument("--private-key", default=None, metavar="PEM", help="EC private key for SendGrid signing")
    parser.add_argument("--dry-run", action="store_true", help="Print the request without sending it.")

    args = parser.parse_args()

    body, headers = _REQUEST_BUILDERS[args.provider](
        args.from_email, args.to_address, args.subject, args.body, args
    )
    endpoint = f"{args.url.rstrip('/')}/api/inbound/{args.provider}"

    print(f"Provider : {args.provider}")
    print(f"Endpoint : {endpoint}")
    print(f"From     : {args.from_email}")
    print(f"Subject  : {args.subject}")

    if args.dry_run:
        print("\n[DRY RUN] Headers:")
        print(json.dumps(headers, indent=2))
        print("[DRY RUN] Body:")
        print(body.decode())
        return 0

    try:
        response = httpx.post(endpoint, content=body, headers=headers, timeout=30)
    except httpx.HTTPError as exc:
        print(f"\n[FAIL] {exc}", file=sys.stderr)
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
