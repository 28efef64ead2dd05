"""Panel session: the connection manager for one iPort SM panel.

A :class:`PanelSession` owns the single TCP connection to the panel and
keeps it alive for the lifetime of the process:

1. **Connect**: open ``ip:port`` within *timeout*.  On success the
   session is ``CONNECTED``, queries the LED once and starts a
   keepalive task that re-queries every *keepalive_interval* seconds.
2. **Operation**: every received chunk is decoded by
   :mod:`pyIPortSM.codec`.  LED reports replace :attr:`color` and are
   passed to *on_led_report*; button events are passed one by one to
   *on_button_event* in arrival order.
3. **Loss**: a socket error, EOF or an idle period longer than
   *timeout* drops the connection, reports the panel unreachable and
   schedules exactly one reconnect after *reconnect_delay*.
4. **Shutdown**: :meth:`stop` cancels the keepalive, lets in-flight
   writes drain for up to *shutdown_grace* seconds and closes the
   socket.  No reconnect follows.

Transport events
~~~~~~~~~~~~~~~~

Everything the socket can tell us is expressed as a
:data:`TransportEvent` (:class:`TransportData`, :class:`TransportError`,
:class:`TransportClosed`, :class:`TransportTimedOut`).  The receive
pump converts reads into events and hands them synchronously to
:meth:`PanelSession.handle_transport_event`, the only place where the
connection state changes in response to the socket.

State machine::

    DISCONNECTED ── start() ──► CONNECTING ── ok ──► CONNECTED
          ▲                        │                    │
          │        failure         │    error / close   │
          └──── reconnect_delay ◄──┴────── / timeout ◄──┘

    CONNECTED ── stop() ──► CLOSING ──► DISCONNECTED (terminal)

Usage::

    session = PanelSession(
        "192.168.2.12",
        on_led_report=handle_color,
        on_button_event=handle_button,
    )
    await session.start()
    ...
    session.set_led(255, 0, 0)
    ...
    await session.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Union

from pyIPortSM.codec import (
    DEFAULT_PANEL_PORT,
    ButtonEventBatch,
    LedReport,
    decode,
    format_query_command,
    format_set_command,
)
from pyIPortSM.color import WHITE, DeviceColor
from pyIPortSM.connection import PanelConnection
from pyIPortSM.enums import ConnectionState
from pyIPortSM.interfaces import invoke

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults (seconds)
# ---------------------------------------------------------------------------

#: Connect timeout and idle timeout.
DEFAULT_TIMEOUT: float = 10.0

#: Delay between losing the connection and the next connect attempt.
DEFAULT_RECONNECT_DELAY: float = 5.0

#: Interval of the keepalive LED query.
DEFAULT_KEEPALIVE_INTERVAL: float = 5.0

#: Maximum time :meth:`PanelSession.stop` waits for pending writes.
DEFAULT_SHUTDOWN_GRACE: float = 2.0


# ---------------------------------------------------------------------------
# Transport events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransportData:
    """Bytes received from the panel."""

    data: bytes


@dataclass(frozen=True)
class TransportError:
    """The socket reported an error."""

    error: BaseException


@dataclass(frozen=True)
class TransportClosed:
    """The panel closed the connection (EOF)."""


@dataclass(frozen=True)
class TransportTimedOut:
    """No data arrived within the idle timeout."""


TransportEvent = Union[
    TransportData, TransportError, TransportClosed, TransportTimedOut
]

# ---------------------------------------------------------------------------
# Callback types
# ---------------------------------------------------------------------------

#: Called with the new colour after every decoded LED report.
LedReportCallback = Callable[[DeviceColor], object]

#: Called with ``(button_index, raw_state)`` for every decoded event.
ButtonEventCallback = Callable[[int, int], object]

#: Called with ``True`` / ``False`` when reachability changes.
ReachabilityCallback = Callable[[bool], object]

#: Opens the TCP stream; defaults to :func:`asyncio.open_connection`.
Connector = Callable[
    [str, int],
    Awaitable[Tuple[asyncio.StreamReader, asyncio.StreamWriter]],
]


# ---------------------------------------------------------------------------
# PanelSession
# ---------------------------------------------------------------------------


class PanelSession:
    """Self-healing connection to one panel.

    Parameters
    ----------
    ip:
        Address of the panel.
    port:
        TCP port of the panel.  Defaults to **10001**.
    timeout:
        Connect timeout and idle timeout in seconds.
    reconnect_delay:
        Seconds to wait before reconnecting after a loss.
    keepalive_interval:
        Seconds between keepalive LED queries.
    shutdown_grace:
        Maximum seconds :meth:`stop` waits for pending writes.
    initial_color:
        Value of :attr:`color` before the first LED report.
    on_led_report:
        Called with the new :class:`DeviceColor` after each LED report.
    on_button_event:
        Called with ``(button_index, raw_state)`` per button event.
    on_reachability:
        Called with the new reachability whenever it changes.
    connector:
        Coroutine function used to open the stream (for tests).
    """

    def __init__(
        self,
        ip: str,
        port: int = DEFAULT_PANEL_PORT,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE,
        initial_color: DeviceColor = WHITE,
        on_led_report: Optional[LedReportCallback] = None,
        on_button_event: Optional[ButtonEventCallback] = None,
        on_reachability: Optional[ReachabilityCallback] = None,
        connector: Optional[Connector] = None,
    ) -> None:
        if not ip:
            raise ValueError("No IP configured for the panel")

        self._ip = ip
        self._port = port
        self._timeout = timeout
        self._reconnect_delay = reconnect_delay
        self._keepalive_interval = keepalive_interval
        self._shutdown_grace = shutdown_grace
        self._connector: Connector = connector or asyncio.open_connection

        self.on_led_report = on_led_report
        self.on_button_event = on_button_event
        self.on_reachability = on_reachability

        self._state = ConnectionState.DISCONNECTED
        self._conn: Optional[PanelConnection] = None
        self._color = initial_color
        self._last_error: Optional[BaseException] = None
        self._last_raw: Optional[str] = None
        self._reachable: Optional[bool] = None

        self._closing = False
        self._stopped = False
        self._supervisor: Optional[asyncio.Task[None]] = None
        self._keepalive: Optional[asyncio.Task[None]] = None
        self._connected = asyncio.Event()
        self._connect_attempts = 0

    # ---- public properties -------------------------------------------

    @property
    def ip(self) -> str:
        return self._ip

    @property
    def port(self) -> int:
        return self._port

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """``True`` while connected and not shutting down."""
        return (
            self._state is ConnectionState.CONNECTED
            and not self._closing
            and self._conn is not None
        )

    @property
    def is_closing(self) -> bool:
        return self._closing

    @property
    def color(self) -> DeviceColor:
        """Last known LED colour."""
        return self._color

    @property
    def last_error(self) -> Optional[BaseException]:
        """The most recent transport error, if any."""
        return self._last_error

    @property
    def last_raw(self) -> Optional[str]:
        """The most recent raw chunk received (diagnostics only)."""
        return self._last_raw

    @property
    def connect_attempts(self) -> int:
        """Number of connect attempts made so far."""
        return self._connect_attempts

    # ---- lifecycle ---------------------------------------------------

    async def start(self) -> None:
        """Start connecting in the background.

        Returns immediately; use :meth:`wait_connected` to wait for the
        first successful connection.  Calling :meth:`start` while
        running is a no-op.

        Raises
        ------
        RuntimeError
            If the session has already been stopped.
        """
        if self._stopped:
            raise RuntimeError("Session has been stopped")
        if self._supervisor is not None and not self._supervisor.done():
            logger.debug("Session already running, skipping start.")
            return
        self._supervisor = asyncio.create_task(self._supervise())

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        """Wait until the session is connected.

        Raises
        ------
        asyncio.TimeoutError
            If no connection was established within *timeout*.
        """
        await asyncio.wait_for(self._connected.wait(), timeout)

    async def stop(self) -> None:
        """Shut the session down for good.  Safe to call multiple times."""
        if self._stopped:
            return
        self._stopped = True
        self._closing = True
        self._state = ConnectionState.CLOSING
        self._connected.clear()
        self._cancel_keepalive()
        logger.info("Shutting down connection to %s:%d", self._ip, self._port)

        conn, self._conn = self._conn, None
        if conn is not None and not conn.is_closed:
            try:
                await asyncio.wait_for(conn.drain(), self._shutdown_grace)
            except (asyncio.TimeoutError, ConnectionError, OSError):
                logger.debug("Pending writes not flushed before shutdown")
            await conn.close()

        supervisor, self._supervisor = self._supervisor, None
        if supervisor is not None and not supervisor.done():
            supervisor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await supervisor

        self._state = ConnectionState.DISCONNECTED
        logger.info("Connection to %s:%d shut down", self._ip, self._port)

    # ---- supervisor --------------------------------------------------

    async def _supervise(self) -> None:
        """Connect, run, and reconnect until :meth:`stop`."""
        while not self._closing:
            try:
                await self._run_once()
            except Exception as exc:
                self._last_error = exc
                logger.exception(
                    "Unexpected error on connection to %s:%d",
                    self._ip,
                    self._port,
                )
                if self._conn is not None:
                    self._drop_connection()
                else:
                    self._mark_disconnected()
            if self._closing:
                break
            logger.info(
                "Reconnecting to %s:%d in %.1fs",
                self._ip,
                self._port,
                self._reconnect_delay,
            )
            await asyncio.sleep(self._reconnect_delay)

    async def _run_once(self) -> None:
        """One connect attempt plus the receive pump if it succeeds."""
        self._state = ConnectionState.CONNECTING
        self._connect_attempts += 1
        logger.info("Connecting to %s:%d", self._ip, self._port)

        try:
            reader, writer = await asyncio.wait_for(
                self._connector(self._ip, self._port), self._timeout
            )
        except (OSError, asyncio.TimeoutError) as exc:
            self._last_error = exc
            logger.warning(
                "Connection to %s:%d failed: %s",
                self._ip,
                self._port,
                str(exc) or type(exc).__name__,
            )
            self._mark_disconnected()
            return

        if self._closing:
            writer.close()
            return

        conn = PanelConnection(reader, writer)
        self._conn = conn
        self._state = ConnectionState.CONNECTED
        self._connected.set()
        logger.info("Connected to %s:%d", self._ip, self._port)
        self._set_reachable(True)

        self.query_led()
        self._keepalive = asyncio.create_task(self._keepalive_loop())

        try:
            await self._pump(conn)
        finally:
            if self._conn is conn:
                self._drop_connection()
            await conn.close()

    async def _pump(self, conn: PanelConnection) -> None:
        """Turn socket reads into transport events until *conn* is gone."""
        while self._conn is conn and self.is_connected:
            event: TransportEvent
            try:
                data = await conn.receive(timeout=self._timeout)
            except asyncio.TimeoutError:
                event = TransportTimedOut()
            except (ConnectionError, OSError) as exc:
                event = TransportError(exc)
            else:
                event = (
                    TransportData(data) if data is not None
                    else TransportClosed()
                )
            if self._conn is not conn:
                break
            try:
                self.handle_transport_event(event)
            except Exception:
                # Drop the offending chunk, keep the connection.
                logger.exception("Error handling %s", type(event).__name__)

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self._keepalive_interval)
            if self.is_connected:
                logger.debug("Keepalive query")
                self.query_led()

    def _cancel_keepalive(self) -> None:
        if self._keepalive is not None:
            self._keepalive.cancel()
            self._keepalive = None

    # ---- transport events --------------------------------------------

    def handle_transport_event(self, event: TransportEvent) -> None:
        """Apply one transport event to the session state."""
        if self._closing:
            return

        if isinstance(event, TransportData):
            self._handle_data(event.data)
            return

        if self._state is not ConnectionState.CONNECTED:
            logger.debug("Ignoring %s while %s", event, self._state.value)
            return

        if isinstance(event, TransportError):
            self._last_error = event.error
            logger.warning("Socket error: %s", event.error)
        elif isinstance(event, TransportTimedOut):
            logger.info(
                "No data from %s:%d for %.1fs, dropping connection",
                self._ip,
                self._port,
                self._timeout,
            )
        else:
            logger.info("Connection closed by %s:%d", self._ip, self._port)

        self._drop_connection()

    def _drop_connection(self) -> None:
        self._cancel_keepalive()
        conn, self._conn = self._conn, None
        if conn is not None:
            conn.abort()
        self._mark_disconnected()

    def _mark_disconnected(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        self._connected.clear()
        self._set_reachable(False)

    def _set_reachable(self, reachable: bool) -> None:
        if self._reachable is reachable:
            return
        self._reachable = reachable
        invoke(self.on_reachability, reachable)

    # ---- incoming data -----------------------------------------------

    def _handle_data(self, data: bytes) -> None:
        self._last_raw = data.decode("utf-8", errors="replace").strip()
        for msg in decode(data):
            if isinstance(msg, LedReport):
                self._color = msg.color
                invoke(self.on_led_report, msg.color)
            elif isinstance(msg, ButtonEventBatch):
                for event in msg.events:
                    invoke(self.on_button_event, event.index, event.raw_state)
            else:
                logger.debug("Unrecognized data: %r", msg.raw)

    # ---- commands ----------------------------------------------------

    def set_led(self, r: int, g: int, b: int) -> bool:
        """Set the LED colour.

        Does nothing unless connected.  On success :attr:`color` is
        updated immediately, before the panel confirms.

        Returns
        -------
        bool
            ``True`` if the command was written.

        Raises
        ------
        ValueError
            If a channel is outside ``[0, 255]``.
        """
        command = format_set_command(r, g, b)
        if not self._write(command):
            return False
        self._color = DeviceColor(r, g, b)
        logger.debug("LED set to %s", self._color)
        return True

    def query_led(self) -> bool:
        """Ask the panel for its LED colour (answer arrives later)."""
        return self._write(format_query_command())

    def _write(self, data: bytes) -> bool:
        conn = self._conn
        if conn is None or not self.is_connected:
            logger.debug("Not connected, dropping %r", data)
            return False
        try:
            conn.write(data)
        except (ConnectionError, OSError) as exc:
            logger.warning("Write to %s failed: %s", conn.peername, exc)
            return False
        return True

    # ---- dunder ------------------------------------------------------

    def __repr__(self) -> str:
        return (
            f"PanelSession({self._ip}:{self._port}, "
            f"state={self._state.value}, color={self._color})"
        )
