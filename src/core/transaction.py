"""
Check Updates - Transaction Client
Runs one request/response phase against the package service.

Each phase gets a fresh transaction. Every notification category is read
by its own listener task that only appends to its own collection; the
caller waits until the service reports completion (or, for phases that
can fail server-side, an error), then lets the listeners drain whatever
is still queued before the result is built.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from core.aggregator import is_security_detail
from core.errors import ProtocolError
from plugins.base import (
    END_OF_STREAM,
    FILTER_NONE,
    TRANSACTION_FLAG_ONLY_TRUSTED,
    ErrorNotification,
    FinishedNotification,
    NotificationKind,
    PackageNotification,
    PackageService,
    ServiceError,
    Transaction,
    UpdateDetailNotification,
)

logger = logging.getLogger(__name__)

# Grace period for an error trailing completion in phases that fail on errors
DRAIN_TIMEOUT = 5.0

PHASE_REFRESH = "refresh"
PHASE_ENUMERATE = "enumerate"
PHASE_DETAILS = "details"
PHASE_APPLY = "apply"

PHASE_LABELS = {
    PHASE_REFRESH: "cache refresh",
    PHASE_ENUMERATE: "getting updates",
    PHASE_DETAILS: "getting update details",
    PHASE_APPLY: "applying updates",
}


@dataclass
class PhaseResult:
    """Everything a phase collected from its notifications."""
    phase: str
    exit_code: Optional[int] = None
    runtime: Optional[int] = None
    packages: list[str] = field(default_factory=list)
    security: dict[str, bool] = field(default_factory=dict)
    errors: list[ErrorNotification] = field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.exit_code is not None


class _PhaseState:
    """Aggregation state shared by a phase's listeners and its driver."""

    def __init__(self, phase: str):
        self.result = PhaseResult(phase)
        self.finished = asyncio.Event()
        self.failed = asyncio.Event()
        self._packages_lock = asyncio.Lock()
        self._security_lock = asyncio.Lock()
        self._errors_lock = asyncio.Lock()

    async def on_package(self, notification: PackageNotification) -> None:
        async with self._packages_lock:
            self.result.packages.append(notification.package_id)

    async def on_update_detail(self, notification: UpdateDetailNotification) -> None:
        is_security = is_security_detail(
            notification.cve_urls, notification.update_text, notification.changelog
        )
        async with self._security_lock:
            self.result.security[notification.package_id] = is_security

    async def on_finished(self, notification: FinishedNotification) -> None:
        self.result.exit_code = notification.exit_code
        self.result.runtime = notification.runtime
        self.finished.set()

    async def on_error(self, notification: ErrorNotification) -> None:
        async with self._errors_lock:
            self.result.errors.append(notification)
        self.failed.set()

    def handler(self, kind: NotificationKind) -> Callable:
        return {
            NotificationKind.PACKAGE: self.on_package,
            NotificationKind.UPDATE_DETAIL: self.on_update_detail,
            NotificationKind.FINISHED: self.on_finished,
            NotificationKind.ERROR: self.on_error,
        }[kind]


async def _listen(channel: asyncio.Queue, handler: Callable) -> None:
    """Feed one notification channel into its handler until the stream ends."""
    while True:
        notification = await channel.get()
        if notification is END_OF_STREAM:
            return
        await handler(notification)


async def _drain(channels: list, listeners: list) -> None:
    """Let live listeners consume everything already queued on their channels."""
    while any(
        not channel.empty() and not task.done() for channel, task in zip(channels, listeners)
    ):
        await asyncio.sleep(0)


class TransactionClient:
    """Drives package service phases and converts their notifications into results."""

    def __init__(
        self,
        service: PackageService,
        phase_timeout: Optional[float] = None,
        drain_timeout: float = DRAIN_TIMEOUT,
    ):
        """
        Args:
            service: Package service to talk to.
            phase_timeout: Seconds to wait for a phase to finish, None to wait forever.
            drain_timeout: Seconds to wait for a trailing error after an apply completes.
        """
        self.service = service
        self.phase_timeout = phase_timeout
        self.drain_timeout = drain_timeout

    async def run_phase(
        self,
        phase: str,
        request: Callable[[Transaction], Awaitable[None]],
        kinds: tuple = (),
        fail_on_error: bool = False,
    ) -> PhaseResult:
        """
        Run one phase in its own transaction.

        Args:
            phase: Phase name, used in messages.
            request: Coroutine function issuing the request on the transaction.
            kinds: Data notification categories to collect.
            fail_on_error: Fail the phase on any error notification, even
                one that arrives alongside completion.

        Returns:
            The collected PhaseResult.

        Raises:
            ProtocolError: if a service call fails, the phase times out or
                ends without completing, or reports an error with fail_on_error.
        """
        label = PHASE_LABELS.get(phase, phase)
        logger.info(f"Creating transaction for {label}...")
        try:
            transaction = await self.service.create_transaction()
        except ServiceError as e:
            raise ProtocolError(f"Failed to create transaction for {label}: {e}", phase) from e

        try:
            return await self._drive(phase, label, transaction, request, kinds, fail_on_error)
        finally:
            await transaction.dispose()

    async def _drive(self, phase, label, transaction, request, kinds, fail_on_error) -> PhaseResult:
        state = _PhaseState(phase)
        wanted = (*kinds, NotificationKind.FINISHED, NotificationKind.ERROR)
        # Subscribe before the request so no early notification is missed
        channels = {kind: transaction.subscribe(kind) for kind in wanted}
        listeners = [
            asyncio.create_task(_listen(channel, state.handler(kind)), name=f"{phase}-{kind.value}")
            for kind, channel in channels.items()
        ]

        try:
            try:
                await request(transaction)
            except ServiceError as e:
                raise ProtocolError(f"Failed {label}: {e}", phase) from e

            await self._wait(label, state, listeners, fail_on_error)
            if state.finished.is_set():
                await _drain(list(channels.values()), listeners)
                if fail_on_error and not state.failed.is_set() and not transaction.closed:
                    await self._await_late_error(label, state, listeners)
        finally:
            for task in listeners:
                task.cancel()
            await asyncio.gather(*listeners, return_exceptions=True)

        result = state.result
        if result.errors:
            details = result.errors[-1].details
            if fail_on_error:
                raise ProtocolError(f"Failed {label}: {details}", phase)
            for error in result.errors:
                logger.warning(f"Service reported error {error.code} during {label}: {error.details}")
        if not result.finished:
            raise ProtocolError(f"Transaction for {label} ended without finishing", phase)

        logger.debug(f"Phase {phase} finished: exit={result.exit_code} runtime={result.runtime}ms")
        return result

    async def _wait(self, label, state: _PhaseState, listeners: list, fail_on_error: bool) -> None:
        """Wait for completion, an error (if it fails the phase) or the streams ending."""
        waiters = [
            asyncio.create_task(state.finished.wait()),
            asyncio.create_task(asyncio.wait(listeners)),
        ]
        if fail_on_error:
            waiters.append(asyncio.create_task(state.failed.wait()))
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=self.phase_timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in waiters:
                waiter.cancel()
        if not done:
            raise ProtocolError(
                f"Timed out after {self.phase_timeout}s waiting for {label}", state.result.phase
            )

    async def _await_late_error(self, label, state: _PhaseState, listeners: list) -> None:
        """Give an error that trails completion a bounded chance to arrive."""
        waiters = [
            asyncio.create_task(state.failed.wait()),
            asyncio.create_task(asyncio.wait(listeners)),
        ]
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=self.drain_timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in waiters:
                waiter.cancel()
        if not done:
            logger.debug(f"Notification streams still open {self.drain_timeout}s after {label}")

    async def refresh_cache(self, force: bool = True) -> PhaseResult:
        """Refresh the package metadata cache."""
        return await self.run_phase(
            PHASE_REFRESH,
            lambda transaction: transaction.refresh_cache(force),
        )

    async def get_updates(self, filter_: int = FILTER_NONE) -> list[str]:
        """List pending updates as package identifiers, in delivery order."""
        result = await self.run_phase(
            PHASE_ENUMERATE,
            lambda transaction: transaction.get_updates(filter_),
            kinds=(NotificationKind.PACKAGE,),
        )
        return result.packages

    async def get_update_details(self, package_ids: list[str]) -> dict[str, bool]:
        """Classify each package's update as security-relevant or not."""
        if not package_ids:
            return {}
        logger.info(f"Getting update details for {len(package_ids)} packages")
        result = await self.run_phase(
            PHASE_DETAILS,
            lambda transaction: transaction.get_update_detail(list(package_ids)),
            kinds=(NotificationKind.UPDATE_DETAIL,),
        )
        return result.security

    async def apply_updates(
        self,
        package_ids: list[str],
        flags: int = TRANSACTION_FLAG_ONLY_TRUSTED,
    ) -> PhaseResult:
        """Install updates for the given packages. An empty list is a no-op."""
        if not package_ids:
            return PhaseResult(PHASE_APPLY)
        logger.info(f"Applying {len(package_ids)} updates")
        return await self.run_phase(
            PHASE_APPLY,
            lambda transaction: transaction.update_packages(flags, list(package_ids)),
            fail_on_error=True,
        )
