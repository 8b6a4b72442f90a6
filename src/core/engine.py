"""
Check Updates - Core Engine
Sequences the update check: schedule, lock, package service phases and verdict.
"""

import asyncio
import contextlib
import logging
import sys
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from core.aggregator import UpdateRecord, build_update_records
from core.cancel import CancellationToken
from core.config import Config
from core.errors import ProtocolError
from core.lock import FileLock
from core.nagios import Severity, Verdict
from core.scheduler import should_run
from core.transaction import TransactionClient
from plugins.base import PackageService

logger = logging.getLogger(__name__)


class CheckState(Enum):
    """Stages of an update check."""
    IDLE = "idle"
    REFRESHING = "refreshing"
    ENUMERATING = "enumerating"
    NO_UPDATES = "no_updates"
    DETAIL_FETCHING = "detail_fetching"
    CONFIRMING = "confirming"
    APPLYING = "applying"
    SCORING = "scoring"
    DONE = "done"


def prompt_confirmation() -> bool:
    """Ask on the terminal whether to install. Only "y" accepts."""
    print("\nProceed with installation? [y/n] ", end="", file=sys.stderr, flush=True)
    answer = sys.stdin.readline()
    return answer.strip().lower() == "y"


async def confirm_in_thread(confirm: Callable[[], bool] = prompt_confirmation) -> bool:
    return await asyncio.to_thread(confirm)


class UpdateChecker:
    """
    Runs the phases of one update check and scores the result.

    Refresh, enumerate, detail fetch and the optional apply run one after
    another, each in its own transaction. Cancellation is only looked at
    before and right after the cache refresh.
    """

    def __init__(
        self,
        config: Config,
        client: TransactionClient,
        cancel: CancellationToken,
        confirm: Callable[[], Awaitable[bool]] = confirm_in_thread,
    ):
        self.config = config
        self.client = client
        self.cancel = cancel
        self.confirm = confirm
        self.state = CheckState.IDLE
        self.records: list[UpdateRecord] = []
        self.applied: list[UpdateRecord] = []

    def _enter(self, state: CheckState) -> None:
        logger.debug(f"Check state {self.state.value} -> {state.value}")
        self.state = state

    async def check(self) -> Verdict:
        """
        Run the check to completion.

        Raises:
            ProtocolError: if any phase fails.
        """
        if not self.cancel.cancelled:
            self._enter(CheckState.REFRESHING)
            logger.info("Refreshing package cache...")
            await self.client.refresh_cache(force=True)

        if self.cancel.cancelled:
            logger.warning(f"Operation cancelled by {self.cancel.reason or 'request'}")
            self._enter(CheckState.DONE)
            return Verdict(Severity.CRITICAL, "Operation cancelled")

        self._enter(CheckState.ENUMERATING)
        logger.info("Getting available updates...")
        package_ids = await self.client.get_updates()

        if not package_ids:
            self._enter(CheckState.NO_UPDATES)
            logger.info("Everything is up to date.")
            return Verdict(Severity.OK, "Everything is up to date", total=0, security=0)

        self._enter(CheckState.DETAIL_FETCHING)
        logger.info("Getting update details...")
        security = await self.client.get_update_details(package_ids)
        self.records = build_update_records(package_ids, security)
        self._log_records()

        to_apply = self._select_updates()
        if to_apply:
            self._enter(CheckState.CONFIRMING)
            if not self.config.non_interactive and not await self.confirm():
                self._enter(CheckState.DONE)
                return Verdict(Severity.CRITICAL, "Cancelled by user")
            self._enter(CheckState.APPLYING)
            logger.info("Applying updates...")
            await self.client.apply_updates([record.package_id for record in to_apply])
            self.applied = to_apply

        self._enter(CheckState.SCORING)
        verdict = self.score()
        self._enter(CheckState.DONE)
        return verdict

    def _select_updates(self) -> list[UpdateRecord]:
        if self.config.apply_updates:
            return list(self.records)
        if self.config.apply_security_updates:
            return [record for record in self.records if record.is_security]
        return []

    def _log_records(self) -> None:
        if self.config.applying:
            logger.info("The following packages will be updated:")
        else:
            logger.info("The following packages are security updates:")
        listed = [
            record for record in self.records
            if record.is_security or self.config.apply_updates
        ]
        for record in listed:
            logger.info(f"  {record.display}")
        if not listed:
            logger.info("  (none)")

    def score(self) -> Verdict:
        """Turn the security update count into a severity."""
        total = len(self.records)
        security = sum(1 for record in self.records if record.is_security)
        if security >= self.config.critical_threshold:
            severity = Severity.CRITICAL
        elif security >= self.config.warning_threshold:
            severity = Severity.WARNING
        else:
            severity = Severity.OK

        message = f"{security} security updates, {total} updates pending"
        if self.applied:
            message += f", {len(self.applied)} applied"
        return Verdict(severity, message, total=total, security=security)


async def run_check(
    config: Config,
    service: PackageService,
    cancel: CancellationToken,
    confirm: Callable[[], Awaitable[bool]] = confirm_in_thread,
    clock: Callable[[], datetime] = datetime.now,
) -> Optional[Verdict]:
    """
    Run the probe: schedule and lock checks, then the update check.

    Returns:
        The verdict, or None when a scheduled run has nothing to do
        (not due yet, or another instance holds the lock).
    """
    lock = FileLock(config.lock_file) if config.lock_file else None
    with lock if lock else contextlib.nullcontext():
        if lock:
            if not lock.try_lock():
                if config.scheduled:
                    logger.info(f"Lock {config.lock_file} is held, skipping scheduled run")
                    return None
                return Verdict(Severity.WARNING, "Failed to acquire lock file")

            if config.schedule:
                last_run = lock.read_timestamp()
                now = clock()
                if not should_run(config.schedule, last_run, now):
                    logger.info(f"Schedule {config.schedule} not due since {last_run}, skipping")
                    return None
                lock.write_timestamp(now)

        logger.info(f"Checking for updates via {service.name}")
        client = TransactionClient(service, phase_timeout=config.phase_timeout)
        checker = UpdateChecker(config, client, cancel, confirm=confirm)
        try:
            return await checker.check()
        except ProtocolError as e:
            logger.error(f"Update check failed in {checker.state.value}: {e}")
            return Verdict(Severity.CRITICAL, f"An error occurred: {e}")
