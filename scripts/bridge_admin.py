"""Operator commands for the Graph bridge.

``check`` confirms that ``AppSettings`` can be built from an env file so a bad
deploy is caught before the service starts failing requests. ``token-status``
reports what the configured token store holds for one principal.

Example usages::

    python -m scripts.bridge_admin check --env-file /opt/bridge/.env

    python -m scripts.bridge_admin token-status --env-file /opt/bridge/.env \
        --principal someone@example.com
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from graph_bridge.core.config import AppSettings, _load_env_file
from graph_bridge.dependencies import build_token_store
from graph_bridge.services.graph_tokens import APPLICATION_PRINCIPAL

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_TOKEN_MISSING = 4
EXIT_RUNTIME_ERROR = 5


def _load_settings(env_file: Path) -> AppSettings:
    _load_env_file(str(env_file))
    return AppSettings(_env_file=str(env_file))  # type: ignore[call-arg]


def _report_token(settings: AppSettings, principal: str | None) -> int:
    if settings.oauth.flow == "client_credentials":
        principal = APPLICATION_PRINCIPAL
    principal = principal or settings.oauth.default_principal
    if not principal:
        print("A --principal is required (no OAUTH_DEFAULT_PRINCIPAL configured).", file=sys.stderr)
        return EXIT_RUNTIME_ERROR
    if settings.storage.backend == "memory":
        print(
            "TOKEN_STORE_BACKEND=memory keeps tokens inside the running service only.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    store = build_token_store(settings)
    try:
        record = store.get(principal)
    finally:
        store.close()

    if record is None:
        print(f"No token stored for {principal}.")
        return EXIT_TOKEN_MISSING

    state = "expired" if record.is_expired(datetime.now(timezone.utc)) else "valid"
    refresh = "yes" if record.refresh_token else "no"
    print(
        f"{principal}: {state}, expires {record.expires_at.isoformat()}, "
        f"refresh token: {refresh}"
    )
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Graph bridge operator commands.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common_arguments(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Path to the environment file (default: .env in the repo root).",
        )

    check_parser = subparsers.add_parser(
        "check",
        help="Validate settings without starting the service.",
    )
    add_common_arguments(check_parser)

    status_parser = subparsers.add_parser(
        "token-status",
        help="Show whether a token is stored for a principal and when it expires.",
    )
    add_common_arguments(status_parser)
    status_parser.add_argument(
        "--principal",
        default=None,
        help="Principal identifier (email or username).",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    env_file: Path = args.env_file

    try:
        if not env_file.exists():
            raise FileNotFoundError(f"Environment file {env_file} does not exist.")
        settings = _load_settings(env_file)
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_RUNTIME_ERROR
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR

    handlers: dict[str, Callable[[], int]] = {
        "check": lambda: EXIT_OK,
        "token-status": lambda: _report_token(settings, args.principal),
    }
    try:
        return handlers[args.command]()
    except ValueError as exc:
        # Undecryptable rows after a secret change without PREVIOUS_SECRETS.
        print(f"Could not read stored token: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
