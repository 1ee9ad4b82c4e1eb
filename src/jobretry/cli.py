from __future__ import annotations

import argparse
import logging
import sys

import yaml

from .app_logging import log_with_fields, setup_logger
from .auth import AuthSession
from .config import AppConfig, ensure_local_paths, load_config
from .inventory import JobInventory
from .models import RunSummary
from .notify import NotificationDispatcher
from .orchestrator import RetryOrchestrator
from .remote import AuthError, BackupServiceClient, InventoryFetchError

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="jobretry", description="Retry failed backup jobs once per pass")
    parser.add_argument("--config", required=True, help="Path to jobretry YAML config")
    parser.add_argument("--verbose", action="store_true", help="Log per-job state transitions")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Check every job and retry the failed ones")
    subparsers.add_parser("status", help="Show each job's status and the decision a run would take")
    return parser


def _open_runtime(
    config: AppConfig, *, verbose: bool = False
) -> tuple[logging.Logger, BackupServiceClient, AuthSession, RetryOrchestrator]:
    ensure_local_paths(config)
    logger = setup_logger(config.logging.path, level=logging.DEBUG if verbose else logging.INFO)
    client = BackupServiceClient(config.service)
    session = AuthSession(client, config.service, logger)
    inventory = JobInventory(client, logger, page_size=config.service.page_size)
    notifier = NotificationDispatcher(config.mail, logger)
    orchestrator = RetryOrchestrator(client=client, inventory=inventory, notifier=notifier, logger=logger)
    return logger, client, session, orchestrator


def render_summary(summary: RunSummary) -> str:
    lines = [
        "Run summary:",
        f"  {'checked':12} {summary.checked}",
        f"  {'retried':12} {summary.retried}",
        f"  {'skipped':12} {summary.skipped}",
        f"  {'errored':12} {summary.errored}",
    ]
    for decision, count in sorted(summary.skipped_by_decision.items()):
        lines.append(f"    {decision:22} {count}")

    lines.append("")
    lines.append("Jobs:")
    if not summary.reports:
        lines.append("  (no jobs)")
    for report in summary.reports:
        line = f"  {report.job.name}: {report.phase.value}"
        if report.last_result is not None:
            line += f" last_result={report.last_result.value}"
        if report.decision is not None:
            line += f" decision={report.decision.value}"
        if report.notification is not None:
            line += f" notification={report.notification.value}"
        if report.error:
            line += f" error={report.error}"
        lines.append(line)
    return "\n".join(lines)


def cmd_run(config: AppConfig, *, verbose: bool = False) -> int:
    logger, client, session, orchestrator = _open_runtime(config, verbose=verbose)
    try:
        summary = orchestrator.run(session)
    except (AuthError, InventoryFetchError) as exc:
        log_with_fields(logger, logging.ERROR, "run_aborted", error=str(exc))
        print(f"run aborted: {exc}", file=sys.stderr)
        return EXIT_FATAL
    finally:
        session.discard()
        client.close()
    print(render_summary(summary))
    return EXIT_OK


def cmd_status(config: AppConfig, *, verbose: bool = False) -> int:
    logger, client, session, orchestrator = _open_runtime(config, verbose=verbose)
    try:
        rows = orchestrator.preview(session)
    except (AuthError, InventoryFetchError) as exc:
        log_with_fields(logger, logging.ERROR, "run_aborted", error=str(exc))
        print(f"status aborted: {exc}", file=sys.stderr)
        return EXIT_FATAL
    finally:
        session.discard()
        client.close()

    print("Jobs:")
    if not rows:
        print("  (no jobs)")
    for job, decision, error in rows:
        if decision is None:
            print(f"  {job.name}: error={error}")
            continue
        snapshot = decision.snapshot
        print(
            "  "
            f"{job.name}: state={snapshot.current_state.value} "
            f"last_result={snapshot.last_result.value} decision={decision.decision.value}"
        )
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config(args.config)
    except (OSError, ValueError, TypeError, yaml.YAMLError) as exc:
        print(f"invalid config: {exc}", file=sys.stderr)
        return EXIT_CONFIG

    if args.command == "run":
        return cmd_run(config, verbose=bool(args.verbose))
    if args.command == "status":
        return cmd_status(config, verbose=bool(args.verbose))
    parser.error(f"Unknown command: {args.command}")
    return EXIT_CONFIG


if __name__ == "__main__":
    raise SystemExit(main())
