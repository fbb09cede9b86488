from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional
from uuid import uuid4

from rich.console import Console
from rich.table import Table

from .core.config import Settings, get_settings
from .webhooks.signatures import (
    Rejected,
    sign_identity_payload,
    sign_media_payload,
    sign_workflow_payload,
    verify_identity_signature,
    verify_media_signature,
    verify_workflow_signature,
)

console = Console()

PROVIDERS = ("media", "identity", "workflow")


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "check", False):
        _run_configuration_check(get_settings())
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    args.func(args)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reelsync webhook developer CLI")
    parser.add_argument("--check", action="store_true", help="Validate configuration and secrets for this environment")

    subparsers = parser.add_subparsers(dest="command")

    sign_parser = subparsers.add_parser("sign", help="Sign a payload file and print the headers a provider would send")
    sign_parser.add_argument("provider", choices=PROVIDERS)
    sign_parser.add_argument("--file", required=True, help="Path to the raw JSON payload")
    sign_parser.add_argument("--curl", metavar="URL", help="Print a ready-to-run curl command against URL instead")
    sign_parser.set_defaults(func=_cmd_sign)

    verify_parser = subparsers.add_parser("verify", help="Verify a payload file against signature headers")
    verify_parser.add_argument("provider", choices=PROVIDERS)
    verify_parser.add_argument("--file", required=True, help="Path to the raw JSON payload")
    verify_parser.add_argument(
        "--header",
        action="append",
        default=[],
        metavar="NAME:VALUE",
        help="Signature header as received; repeat for multi-header schemes.",
    )
    verify_parser.set_defaults(func=_cmd_verify)
    return parser


def _read_payload(path: str) -> bytes:
    target = Path(path).expanduser()
    if not target.exists():
        console.print(f"[red]File not found: {target}[/]")
        sys.exit(2)
    return target.read_bytes()


def sign_for(provider: str, raw_body: bytes, settings: Settings) -> dict[str, str]:
    secrets = settings.secrets
    if provider == "media":
        return sign_media_payload(raw_body, secrets.media_webhook_secret)
    if provider == "identity":
        return sign_identity_payload(raw_body, secrets.identity_webhook_secret, msg_id=f"msg_{uuid4().hex}")
    return sign_workflow_payload(raw_body, secrets.workflow_current_signing_key, subject=settings.workflow_callback_url)


def verify_for(provider: str, raw_body: bytes, headers: dict[str, str], settings: Settings):
    secrets = settings.secrets
    tolerance = settings.webhook_tolerance_seconds
    if provider == "media":
        return verify_media_signature(raw_body, headers, secrets.media_webhook_secret, tolerance_s=tolerance)
    if provider == "identity":
        return verify_identity_signature(raw_body, headers, secrets.identity_webhook_secret, tolerance_s=tolerance)
    return verify_workflow_signature(
        raw_body,
        headers,
        secrets.workflow_current_signing_key,
        secrets.workflow_next_signing_key,
        tolerance_s=tolerance,
    )


def _cmd_sign(args: argparse.Namespace) -> None:
    raw_body = _read_payload(args.file)
    headers = sign_for(args.provider, raw_body, get_settings())
    if args.curl:
        flags = " ".join(f"-H '{name}: {value}'" for name, value in headers.items())
        console.print(
            f"curl -X POST {args.curl} -H 'Content-Type: application/json' {flags} --data-binary @{args.file}",
            highlight=False,
            soft_wrap=True,
        )
        return
    console.print_json(data=headers)


def _cmd_verify(args: argparse.Namespace) -> None:
    raw_body = _read_payload(args.file)
    headers: dict[str, str] = {}
    for entry in args.header:
        name, sep, value = entry.partition(":")
        if not sep:
            console.print(f"[red]Malformed header (expected NAME:VALUE): {entry}[/]")
            sys.exit(2)
        headers[name.strip()] = value.strip()

    result = verify_for(args.provider, raw_body, headers, get_settings())
    if isinstance(result, Rejected):
        console.print(f"[red]Rejected[/] ({result.provider}): {result.reason}")
        sys.exit(1)
    console.print(f"[green]Verified[/] ({result.provider})")


def _run_configuration_check(settings: Settings) -> None:
    secrets = settings.secrets
    checks = {
        "jwt secret": secrets.jwt_secret != "change-me",
        "media webhook secret": secrets.media_webhook_secret != "change-me",
        "identity webhook secret": secrets.identity_webhook_secret.startswith("whsec_"),
        "workflow signing key": secrets.workflow_current_signing_key != "change-me",
        "media API token": bool(secrets.media_token_id and secrets.media_token_secret),
        "text generation key": bool(secrets.openai_api_key),
        "upload API key": settings.storage_backend != "uploadthing" or bool(secrets.upload_api_key),
        "workflow token": settings.normalized_job_backend != "workflow" or bool(secrets.workflow_token),
    }

    table = Table(title=f"Configuration check ({settings.environment})")
    table.add_column("Setting")
    table.add_column("Status")
    for label, ok in checks.items():
        table.add_row(label, "[green]ok[/]" if ok else "[red]missing[/]")
    console.print(table)
    console.print(
        json.dumps(
            {
                "database_url": settings.database_url,
                "storage_backend": settings.storage_backend,
                "job_backend": settings.normalized_job_backend,
                "rate_limit_backend": settings.rate_limit_backend,
            }
        ),
        highlight=False,
    )

    if not all(checks.values()):
        console.print("[red]Incomplete configuration detected. Consult .env.example.[/]")
        sys.exit(1)
    console.print("[green]Configuration looks good![/]")


if __name__ == "__main__":
    main()
