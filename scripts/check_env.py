"""Validate the portal's ``.env`` and watch it for unexpected edits.

Two checks are available:

1. Load ``AppSettings`` from the given ``.env`` so a missing Entra ID client,
   tenant or session secret is caught before the portal refuses to start.
   Settings that load but look unsafe for a deployment (no dedicated token
   encryption secret, insecure session cookie outside development) are
   reported as warnings.
2. Record a SHA256 baseline of the file and later compare against it, so an
   accidental edit that would rotate secrets or swap the tenant is noticed.

Example usages::

    python -m scripts.check_env record --env-file /opt/portal/.env \
        --hash-file /opt/portal/.env.sha256

    python -m scripts.check_env verify --env-file /opt/portal/.env \
        --hash-file /opt/portal/.env.sha256

    python -m scripts.check_env check --strict
"""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from portal.clients.microsoft_auth import MULTI_TENANT_AUTHORITIES, _tenant_guid
from portal.core.config import AppSettings, _load_env_file

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_WARNINGS = 4
EXIT_RUNTIME_ERROR = 5

DEVELOPMENT_ENVIRONMENTS = frozenset({"development", "dev", "local", "test"})


def _file_digest(env_file: Path) -> str:
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def _load_settings(env_file: Path) -> AppSettings:
    _load_env_file(str(env_file))
    return AppSettings()  # type: ignore[call-arg]


def deployment_warnings(settings: AppSettings) -> list[str]:
    """Return human-readable concerns about settings that loaded successfully."""
    warnings: list[str] = []
    if not settings.security.token_encryption_secret:
        warnings.append(
            "TOKEN_ENCRYPTION_SECRET is unset; stored tokens are encrypted with AUTH_SECRET."
        )
    elif settings.security.token_encryption_secret == settings.session.secret:
        warnings.append("TOKEN_ENCRYPTION_SECRET should differ from AUTH_SECRET.")
    is_development = settings.environment.lower() in DEVELOPMENT_ENVIRONMENTS
    if not is_development and not settings.session.cookie_secure:
        warnings.append(
            f"SESSION_COOKIE_SECURE is disabled in the {settings.environment} environment."
        )
    if not is_development and settings.microsoft.redirect_uri.scheme != "https":
        warnings.append("MICROSOFT_REDIRECT_URI should use https outside development.")
    tenant = settings.microsoft.tenant_id
    if tenant not in MULTI_TENANT_AUTHORITIES and _tenant_guid(tenant) is None:
        warnings.append(
            "TENANT_ID is not a tenant GUID; ID tokens are not checked against the tenant."
        )
    if "offline_access" not in settings.microsoft.scopes:
        warnings.append(
            "MICROSOFT_SCOPES lacks offline_access; Microsoft will not issue refresh tokens."
        )
    return warnings


def _record_baseline(env_file: Path, hash_file: Path) -> int:
    digest = _file_digest(env_file)
    hash_file.write_text(f"{digest}\n", encoding="utf-8")
    print(f"Recorded checksum to {hash_file} ({digest})")
    return EXIT_OK


def _compare_baseline(env_file: Path, hash_file: Path) -> int:
    if not hash_file.exists():
        print(
            f"No baseline at {hash_file}. Run the 'record' command first.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    expected = hash_file.read_text(encoding="utf-8").strip()
    actual = _file_digest(env_file)
    if expected == actual:
        print("Environment checksum OK.")
        return EXIT_OK

    print(
        "Environment checksum mismatch!\n"
        f"  expected: {expected}\n"
        f"  actual:   {actual}\n"
        "Check whether the tenant or any secret changed before restarting the portal.",
        file=sys.stderr,
    )
    return EXIT_CHECKSUM_ERROR


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate portal settings and detect .env drift."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_env_arguments(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Path to the environment file (default: .env in the repo root).",
        )
        subparser.add_argument(
            "--strict",
            action="store_true",
            help="Fail with a distinct exit code when deployment warnings are found.",
        )

    for name, help_text in (
        ("record", "Validate settings and store the checksum baseline."),
        ("verify", "Validate settings and compare the checksum with the baseline."),
    ):
        subparser = subparsers.add_parser(name, help=help_text)
        add_env_arguments(subparser)
        subparser.add_argument(
            "--hash-file",
            required=True,
            type=Path,
            help="Location of the checksum baseline.",
        )

    add_env_arguments(
        subparsers.add_parser("check", help="Validate settings only.")
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    if not env_file.exists():
        print(f"Environment file {env_file} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    try:
        settings = _load_settings(env_file)
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR
    except Exception as exc:  # pylint: disable=broad-except
        print(f"Unexpected error during validation: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    warnings = deployment_warnings(settings)
    for warning in warnings:
        print(f"warning: {warning}", file=sys.stderr)

    handlers: dict[str, Callable[[], int]] = {
        "record": lambda: _record_baseline(env_file, args.hash_file),
        "verify": lambda: _compare_baseline(env_file, args.hash_file),
        "check": lambda: EXIT_OK,
    }
    exit_code = handlers[args.command]()
    if exit_code == EXIT_OK and warnings and args.strict:
        return EXIT_WARNINGS
    return exit_code


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
