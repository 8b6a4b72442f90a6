#!/usr/bin/env python3
"""
Check Updates - Monitoring Probe
Checks for pending (security) updates via PackageKit and reports a
monitoring-plugin status line. Run from cron with --lock/--cron, or by hand.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from core.cancel import CancellationToken, install_signal_handlers
from core.config import DEFAULT_CRITICAL, DEFAULT_WARNING, build_config, load_config_file
from core.engine import run_check
from core.errors import CheckError, ConfigurationError
from core.nagios import Severity, Verdict

logger = logging.getLogger("check_updates")

__version__ = "0.1.0"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="check_updates",
        description="Check for system updates via PackageKit",
    )
    parser.add_argument("--config", metavar="FILE", help="JSON file with default settings")
    parser.add_argument("--lock", metavar="FILE", help="lock file; enables single-instance runs")
    parser.add_argument("--cron", metavar="CRON_SPEC",
                        help="run only when this schedule is due (requires --lock)")
    parser.add_argument("-w", "--warning", type=int, default=None,
                        help=f"security updates for Warning (default {DEFAULT_WARNING})")
    parser.add_argument("-c", "--critical", type=int, default=None,
                        help=f"security updates for Critical (default {DEFAULT_CRITICAL})")
    parser.add_argument("--security-update", action="store_true",
                        help="install pending security updates")
    parser.add_argument("--update", action="store_true", help="install all pending updates")
    parser.add_argument("-y", "--yes", action="store_true", help="do not ask for confirmation")
    parser.add_argument("--phase-timeout", type=float, default=None, metavar="SECONDS",
                        help="give up on a service phase after this long")
    parser.add_argument("--log-file", metavar="FILE", help="also write the log to FILE")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def setup_logging(verbose: bool = False, log_file: Path = None) -> None:
    """Log to stderr (stdout carries the status line), plus an optional file."""
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


def report(verdict: Verdict) -> int:
    print(verdict)
    return verdict.exit_code


async def _run(config) -> int:
    # Imported here so configuration errors are reported without GLib present
    from plugins.packagekit import PackageKitService

    cancel = CancellationToken()
    install_signal_handlers(asyncio.get_running_loop(), cancel)
    service = PackageKitService()
    try:
        verdict = await run_check(config, service, cancel)
    finally:
        service.close()
    if verdict is None:
        return 0
    return report(verdict)


def main(argv: list[str] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        file_values = load_config_file(Path(args.config)) if args.config else {}
        config = build_config(args, file_values)
    except ConfigurationError as e:
        setup_logging(args.verbose)
        logger.error(f"Configuration error: {e}")
        return report(Verdict(Severity.UNKNOWN, f"Configuration error: {e}"))

    setup_logging(args.verbose, config.log_file)
    try:
        return asyncio.run(_run(config))
    except CheckError as e:
        logger.error(f"Update check failed: {e}")
        return report(Verdict(Severity.CRITICAL, f"An error occurred: {e}"))


if __name__ == "__main__":
    sys.exit(main())
