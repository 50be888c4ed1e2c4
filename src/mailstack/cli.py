"""Command-line entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import secrets
import sys
from collections.abc import Sequence
from typing import Optional

from mailstack import __version__
from mailstack.aws.clients import resolve_region
from mailstack.aws.gateway import CloudGateway
from mailstack.aws_credentials import CredentialBroker
from mailstack.config import Settings, load_settings
from mailstack.errors import CancelledByUser, MailstackError, connection_not_found
from mailstack.infrastructure.engine import PulumiEngine
from mailstack.infrastructure.planner import ArchiveRetention
from mailstack.lifecycle import CommandResult, Orchestrator, Prompter
from mailstack.logging_utils import configure_logging
from mailstack.metadata import ConnectionStore
from mailstack.output import Reporter
from mailstack.utils.serialization import dumps

logger = logging.getLogger(__name__)

_PROVIDERS = ("vercel", "aws", "railway", "other")


def _provider_params(args: argparse.Namespace) -> dict[str, str]:
    values = {
        "team_slug": getattr(args, "vercel_team", None),
        "project_name": getattr(args, "vercel_project", None),
        "dashboard_account_id": getattr(args, "dashboard_account", None),
        "external_id": getattr(args, "external_id", None),
    }
    return {key: value.strip() for key, value in values.items() if value and value.strip()}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailstack", description="Deploy and manage email infrastructure in your AWS account."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")
    parser.add_argument("--profile", default=None, help="AWS profile to use")
    sub = parser.add_subparsers(dest="cmd", required=True)

    def add_region(p: argparse.ArgumentParser) -> None:
        p.add_argument("--region", default=None, help="AWS region (defaults to AWS_REGION or the profile)")

    def add_yes(p: argparse.ArgumentParser) -> None:
        p.add_argument("-y", "--yes", action="store_true", help="Answer every prompt with its default")

    def add_provider(p: argparse.ArgumentParser) -> None:
        p.add_argument("--provider", choices=_PROVIDERS, default="vercel", help="Where your app is hosted")
        p.add_argument("--vercel-team", default=None, help="Vercel team slug (for OIDC trust)")
        p.add_argument("--vercel-project", default=None, help="Vercel project name (for OIDC trust)")
        p.add_argument("--dashboard-account", default=None, help="Account allowed to read via the dashboard role")
        p.add_argument("--external-id", default=None, help="External ID required by the dashboard role")

    p_init = sub.add_parser("init", help="Deploy new email infrastructure")
    add_region(p_init)
    add_yes(p_init)
    add_provider(p_init)
    p_init.add_argument("--domain", default=None, help="Sending domain to create or adopt")
    p_init.add_argument("--preset", default=None, help="Preset name (starter, production, enterprise, ...)")

    p_connect = sub.add_parser("connect", help="Attach to existing SES identities")
    add_region(p_connect)
    add_yes(p_connect)
    add_provider(p_connect)
    p_connect.add_argument("--preset", default="production", help="Preset name")

    p_upgrade = sub.add_parser("upgrade", help="Enable more features on a deployment")
    add_region(p_upgrade)
    add_yes(p_upgrade)
    p_upgrade.add_argument("--enable", nargs="+", default=[], help="Features to enable (config-set, event-tracking, reputation-metrics)")
    p_upgrade.add_argument("--preset", default=None, help="Merge a preset's features")
    p_upgrade.add_argument("--tracking-domain", default=None, help="Custom open/click tracking domain")
    p_upgrade.add_argument("--archive-retention", default=None, help=f"Archive retention, one of: {', '.join(item.value for item in ArchiveRetention)}")

    p_update = sub.add_parser("update", help="Re-apply the recorded configuration")
    add_region(p_update)
    add_yes(p_update)

    p_status = sub.add_parser("status", help="Show a deployment")
    add_region(p_status)
    p_status.add_argument("--account", default=None, help="Account ID (defaults to the caller's)")
    p_status.add_argument("--json", action="store_true", help="Print machine-readable output")

    p_verify = sub.add_parser("verify", help="Check DNS and identity status for a domain")
    add_region(p_verify)
    p_verify.add_argument("--domain", required=True, help="Domain to verify")
    p_verify.add_argument("--json", action="store_true", help="Print machine-readable output")

    p_restore = sub.add_parser("restore", help="Put back the configuration mailstack replaced")
    add_region(p_restore)
    add_yes(p_restore)

    p_destroy = sub.add_parser("destroy", help="Remove everything mailstack created")
    add_region(p_destroy)
    add_yes(p_destroy)

    p_console = sub.add_parser("console", help="Serve the local dashboard API")
    add_region(p_console)
    p_console.add_argument("--port", type=int, default=None, help="Port to listen on")
    p_console.add_argument("--no-token", action="store_true", help="Do not require a session token")

    return parser


def build_orchestrator(
    args: argparse.Namespace, settings: Settings, region: str, reporter: Reporter
) -> Orchestrator:
    return Orchestrator(
        store=ConnectionStore(settings.storage.connections_path),
        engine=PulumiEngine(settings=settings, profile=args.profile),
        gateway=CloudGateway(region, profile=args.profile, settings=settings),
        prompter=Prompter(yes=bool(getattr(args, "yes", False))),
        reporter=reporter,
        settings=settings,
    )


async def _dispatch(args: argparse.Namespace, orchestrator: Orchestrator, region: str) -> CommandResult:
    if args.cmd == "init":
        return await orchestrator.init(
            args.provider,
            region,
            domain=args.domain,
            preset=args.preset,
            provider_params=_provider_params(args),
        )
    if args.cmd == "connect":
        return await orchestrator.connect(
            args.provider, region, preset=args.preset, provider_params=_provider_params(args)
        )
    if args.cmd == "upgrade":
        return await orchestrator.upgrade(
            region,
            enable=args.enable,
            preset=args.preset,
            tracking_domain=args.tracking_domain,
            archive_retention=args.archive_retention,
        )
    if args.cmd == "update":
        return await orchestrator.update(region)
    if args.cmd == "status":
        return await orchestrator.status(region, account_id=args.account)
    if args.cmd == "verify":
        return await orchestrator.verify(args.domain, region)
    if args.cmd == "restore":
        return await orchestrator.restore(region)
    if args.cmd == "destroy":
        return await orchestrator.destroy(region)
    raise ValueError(f"unknown command: {args.cmd}")


async def _console_app(args: argparse.Namespace, settings: Settings, region: str):
    from mailstack.console import create_console_app

    gateway = CloudGateway(region, profile=args.profile, settings=settings)
    account_id = (await gateway.caller_identity()).account_id
    record = ConnectionStore(settings.storage.connections_path).load(account_id, region)
    if record is None or not record.resources.role_arn:
        raise connection_not_found(account_id, region)
    token = None if args.no_token else secrets.token_urlsafe(24)
    app = create_console_app(
        CredentialBroker.from_settings(settings),
        record.resources.role_arn,
        region,
        external_id=record.provider_params.get("external_id"),
        table_name=record.resources.table_name,
        account_id=account_id,
        token=token,
        settings=settings,
    )
    return app, token


def _run_console(args: argparse.Namespace, settings: Settings, region: str) -> int:
    from mailstack.console import serve

    app, token = asyncio.run(_console_app(args, settings, region))
    port = args.port or settings.console.port
    print(f"Console API on http://{settings.console.host}:{port}")
    if token:
        print(f"Session token: {token}")
    serve(app, settings.console.host, port)
    return 0


def _report_error(exc: MailstackError, step: str | None) -> None:
    if step:
        print(f"x Failed during: {step}", file=sys.stderr)
    print(f"x {exc.message} [{exc.code}]", file=sys.stderr)
    if exc.suggestion:
        print(f"  {exc.suggestion}", file=sys.stderr)
    if exc.docs_url:
        print(f"  See {exc.docs_url}", file=sys.stderr)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
    except RuntimeError as exc:
        print(f"x {exc}", file=sys.stderr)
        return 1
    configure_logging("DEBUG" if args.verbose else None)

    reporter = Reporter(quiet=bool(getattr(args, "json", False)))
    try:
        region = resolve_region(args.region, settings, args.profile)
        if args.cmd == "console":
            return _run_console(args, settings, region)
        orchestrator = build_orchestrator(args, settings, region, reporter)
        result = asyncio.run(_dispatch(args, orchestrator, region))
    except CancelledByUser:
        print("Cancelled; nothing was changed after the last completed step.")
        return 0
    except MailstackError as exc:
        _report_error(exc, reporter.current_step)
        return 1
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 1
    except Exception:
        logger.exception("Unexpected failure running %s", args.cmd)
        return 1

    if getattr(args, "json", False):
        print(dumps(result.data))
    return result.exit_code


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
