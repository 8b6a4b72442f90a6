"""
Check Updates - PackageKit Plugin
Talks to the PackageKit daemon on the system D-Bus.
"""

import asyncio
import logging
import threading
from typing import Optional

import gi

gi.require_version('Gio', '2.0')
from gi.repository import Gio, GLib

from .base import (
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

PK_BUS_NAME = "org.freedesktop.PackageKit"
PK_OBJECT_PATH = "/org/freedesktop/PackageKit"
PK_INTERFACE = "org.freedesktop.PackageKit"
PK_TRANSACTION_INTERFACE = "org.freedesktop.PackageKit.Transaction"


def _notification_from_signal(name: str, params: GLib.Variant):
    """Map a Transaction signal onto (kind, notification), or None if not wanted."""
    args = params.unpack()
    if name == "Package":
        info, package_id, summary = args
        return NotificationKind.PACKAGE, PackageNotification(info, package_id, summary)
    if name == "UpdateDetail":
        (package_id, updates, obsoletes, vendor_urls, bugzilla_urls, cve_urls,
         restart, update_text, changelog, state, issued, updated) = args
        return NotificationKind.UPDATE_DETAIL, UpdateDetailNotification(
            package_id=package_id,
            updates=tuple(updates),
            obsoletes=tuple(obsoletes),
            vendor_urls=tuple(vendor_urls),
            bugzilla_urls=tuple(bugzilla_urls),
            cve_urls=tuple(cve_urls),
            restart=restart,
            update_text=update_text,
            changelog=changelog,
            state=state,
            issued=issued,
            updated=updated,
        )
    if name == "Finished":
        exit_code, runtime = args
        return NotificationKind.FINISHED, FinishedNotification(exit_code, runtime)
    if name == "ErrorCode":
        code, details = args
        return NotificationKind.ERROR, ErrorNotification(code, details)
    return None


class _GLibLoopThread:
    """Runs the default GLib main loop in the background so Gio callbacks get dispatched."""

    def __init__(self):
        self._loop = GLib.MainLoop()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is None:
            self._thread = threading.Thread(target=self._loop.run, name="glib-mainloop", daemon=True)
            self._thread.start()

    def stop(self) -> None:
        if self._thread is not None:
            self._loop.quit()
            self._thread.join(timeout=1)
            self._thread = None


async def _call(
    bus: Gio.DBusConnection,
    object_path: str,
    interface: str,
    method: str,
    params: Optional[GLib.Variant],
    reply_type: Optional[str] = None,
) -> GLib.Variant:
    """Call a PackageKit method asynchronously and await the reply."""
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def resolve(reply=None, error=None):
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(reply)

    def on_done(connection, result):
        try:
            reply = connection.call_finish(result)
        except GLib.Error as e:
            loop.call_soon_threadsafe(resolve, None, ServiceError(f"{method}: {e.message}"))
            return
        loop.call_soon_threadsafe(resolve, reply)

    bus.call(
        PK_BUS_NAME,
        object_path,
        interface,
        method,
        params,
        GLib.VariantType.new(reply_type) if reply_type else None,
        Gio.DBusCallFlags.NONE,
        -1,
        None,
        on_done,
    )
    return await future


class PackageKitTransaction(Transaction):
    """A PackageKit transaction object, with its signals routed onto channels."""

    def __init__(self, bus: Gio.DBusConnection, object_path: str, loop: asyncio.AbstractEventLoop):
        super().__init__()
        self.bus = bus
        self.object_path = object_path
        self._loop = loop
        self._subscription = bus.signal_subscribe(
            PK_BUS_NAME,
            PK_TRANSACTION_INTERFACE,
            None,
            object_path,
            None,
            Gio.DBusSignalFlags.NONE,
            self._on_signal,
        )

    def _on_signal(self, connection, sender, path, interface, signal_name, params):
        # Runs on the GLib thread
        if signal_name == "Destroy":
            self._loop.call_soon_threadsafe(self.close)
            return
        mapped = _notification_from_signal(signal_name, params)
        if mapped is None:
            return
        kind, notification = mapped
        self._loop.call_soon_threadsafe(self.publish, kind, notification)

    async def _request(self, method: str, params: GLib.Variant) -> None:
        logger.debug(f"{self.object_path}: {method}")
        await _call(self.bus, self.object_path, PK_TRANSACTION_INTERFACE, method, params)

    async def refresh_cache(self, force: bool) -> None:
        await self._request("RefreshCache", GLib.Variant("(b)", (force,)))

    async def get_updates(self, filter_: int) -> None:
        await self._request("GetUpdates", GLib.Variant("(t)", (filter_,)))

    async def get_update_detail(self, package_ids: list[str]) -> None:
        await self._request("GetUpdateDetail", GLib.Variant("(as)", (package_ids,)))

    async def update_packages(self, flags: int, package_ids: list[str]) -> None:
        await self._request("UpdatePackages", GLib.Variant("(tas)", (flags, package_ids)))

    async def dispose(self) -> None:
        if self._subscription:
            self.bus.signal_unsubscribe(self._subscription)
            self._subscription = 0
        self.close()


class PackageKitService(PackageService):
    """PackageKit daemon reached over the system bus."""

    def __init__(self, bus: Optional[Gio.DBusConnection] = None):
        self._bus = bus
        self._glib = _GLibLoopThread()

    @property
    def name(self) -> str:
        return "PackageKit"

    def _get_bus(self) -> Gio.DBusConnection:
        if self._bus is None:
            try:
                self._bus = Gio.bus_get_sync(Gio.BusType.SYSTEM, None)
            except GLib.Error as e:
                raise ServiceError(f"Failed to connect to system D-Bus: {e.message}") from e
        return self._bus

    async def create_transaction(self) -> PackageKitTransaction:
        bus = self._get_bus()
        self._glib.start()
        reply = await _call(bus, PK_OBJECT_PATH, PK_INTERFACE, "CreateTransaction", None, "(o)")
        (object_path,) = reply.unpack()
        logger.debug(f"Created transaction {object_path}")
        return PackageKitTransaction(bus, object_path, asyncio.get_running_loop())

    def close(self) -> None:
        self._glib.stop()
