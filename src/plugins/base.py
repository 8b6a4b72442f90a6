"""
Check Updates - Package Service Base
Abstract interface to the package-management service and its notifications.

A service hands out one transaction per request. While the request runs,
the transaction emits notifications that are delivered on per-category
channels. Channels end with ``END_OF_STREAM`` once the service is done
with the transaction.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

FILTER_NONE = 0
TRANSACTION_FLAG_ONLY_TRUSTED = 1 << 1

END_OF_STREAM = None


class ServiceError(Exception):
    """A call to the package service failed."""


class NotificationKind(Enum):
    """Notification categories emitted by a transaction."""
    PACKAGE = "package"
    UPDATE_DETAIL = "update_detail"
    FINISHED = "finished"
    ERROR = "error"


@dataclass(frozen=True)
class PackageNotification:
    """A package matched the request (e.g. one pending update)."""
    info: int
    package_id: str
    summary: str


@dataclass(frozen=True)
class UpdateDetailNotification:
    """Details about the update for one package."""
    package_id: str
    updates: tuple = ()
    obsoletes: tuple = ()
    vendor_urls: tuple = ()
    bugzilla_urls: tuple = ()
    cve_urls: tuple = ()
    restart: int = 0
    update_text: str = ""
    changelog: str = ""
    state: int = 0
    issued: str = ""
    updated: str = ""


@dataclass(frozen=True)
class FinishedNotification:
    """The transaction completed."""
    exit_code: int
    runtime: int


@dataclass(frozen=True)
class ErrorNotification:
    """The service reported an error for the transaction."""
    code: int
    details: str


class Transaction(ABC):
    """
    One service-side session for a single request.

    Subscribers get their own queue per category; anything published before
    a subscription exists is not replayed, so subscribe before sending the
    request.
    """

    def __init__(self):
        self._channels: dict[NotificationKind, list[asyncio.Queue]] = defaultdict(list)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, kind: NotificationKind) -> asyncio.Queue:
        """Open a channel for one notification category."""
        queue: asyncio.Queue = asyncio.Queue()
        if self._closed:
            queue.put_nowait(END_OF_STREAM)
        else:
            self._channels[kind].append(queue)
        return queue

    def publish(self, kind: NotificationKind, notification) -> None:
        """Deliver a notification to every subscriber of its category."""
        if self._closed:
            logger.debug(f"Dropping {kind.value} notification on closed transaction")
            return
        for queue in self._channels.get(kind, ()):
            queue.put_nowait(notification)

    def close(self) -> None:
        """End every channel. Later notifications are dropped."""
        if self._closed:
            return
        self._closed = True
        for queues in self._channels.values():
            for queue in queues:
                queue.put_nowait(END_OF_STREAM)

    @abstractmethod
    async def refresh_cache(self, force: bool) -> None:
        """Request a package metadata refresh."""
        pass

    @abstractmethod
    async def get_updates(self, filter_: int) -> None:
        """Request the list of pending updates (PACKAGE notifications)."""
        pass

    @abstractmethod
    async def get_update_detail(self, package_ids: list[str]) -> None:
        """Request update details (UPDATE_DETAIL notifications)."""
        pass

    @abstractmethod
    async def update_packages(self, flags: int, package_ids: list[str]) -> None:
        """Request installation of the given package updates."""
        pass

    async def dispose(self) -> None:
        """Release transport resources held for this transaction."""
        self.close()


class PackageService(ABC):
    """Connection to a package-management service."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable service name."""
        pass

    @abstractmethod
    async def create_transaction(self) -> Transaction:
        """
        Create a new transaction.

        Raises:
            ServiceError: if the service cannot be reached.
        """
        pass

    def close(self) -> None:
        """Disconnect from the service."""
        pass
