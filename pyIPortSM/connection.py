"""Low-level TCP connection to the panel.

The iPort SM protocol has no framing beyond ``\\r`` record separators,
and the panel usually sends one record per TCP segment.  This module
therefore exposes raw chunks: :class:`PanelConnection` wraps an
:mod:`asyncio` ``StreamReader`` / ``StreamWriter`` pair and provides a
non-blocking :meth:`~PanelConnection.write`, a :meth:`drain` for flow
control, a :meth:`receive` coroutine with an idle timeout, and
:meth:`close`.

Usage::

    reader, writer = await asyncio.open_connection(ip, port)
    conn = PanelConnection(reader, writer)
    conn.write(format_query_command())
    chunk = await conn.receive(timeout=10.0)   # bytes, or None on EOF
    await conn.close()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)

#: Maximum number of bytes returned by a single :meth:`receive`.
MAX_CHUNK_SIZE: int = 4096


class PanelConnection:
    """Raw byte transport for a single panel TCP connection.

    Parameters
    ----------
    reader:
        The :class:`asyncio.StreamReader` (read side of the socket).
    writer:
        The :class:`asyncio.StreamWriter` (write side of the socket).
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._closed = False

    # ---- properties --------------------------------------------------

    @property
    def is_closed(self) -> bool:
        """``True`` when the connection has been closed."""
        return self._closed

    @property
    def peername(self) -> str:
        """Remote address as a human-readable string."""
        try:
            info = self._writer.get_extra_info("peername")
            if info:
                return f"{info[0]}:{info[1]}"
        except Exception:  # noqa: BLE001
            pass
        return "<unknown>"

    # ---- send --------------------------------------------------------

    def write(self, data: bytes) -> None:
        """Queue *data* for sending without waiting.

        Raises
        ------
        ConnectionError
            If the connection has been closed.
        """
        if self._closed:
            raise ConnectionError("Connection is closed")
        self._writer.write(data)
        logger.debug("Sent %r → %s", data, self.peername)

    async def drain(self) -> None:
        """Wait until the write buffer has been flushed to the socket."""
        if self._closed:
            raise ConnectionError("Connection is closed")
        await self._writer.drain()

    # ---- receive -----------------------------------------------------

    async def receive(self, timeout: Optional[float] = None) -> Optional[bytes]:
        """Read the next chunk of data from the socket.

        Parameters
        ----------
        timeout:
            Idle timeout in seconds; ``None`` waits indefinitely.

        Returns
        -------
        bytes or None
            The received bytes, or ``None`` when the remote end has
            closed the connection (EOF).

        Raises
        ------
        ConnectionError
            If the connection was already closed locally.
        asyncio.TimeoutError
            If no data arrived within *timeout*.
        """
        if self._closed:
            raise ConnectionError("Connection is closed")

        if timeout is None:
            data = await self._reader.read(MAX_CHUNK_SIZE)
        else:
            data = await asyncio.wait_for(
                self._reader.read(MAX_CHUNK_SIZE), timeout
            )
        if not data:
            return None

        logger.debug("Received %r ← %s", data, self.peername)
        return data

    # ---- close -------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying TCP socket.

        Safe to call multiple times.  Also signals EOF on the reader so
        that any pending :meth:`receive` call is unblocked.
        """
        if self._closed:
            return
        self._closed = True
        try:
            if not self._reader.at_eof():
                self._reader.feed_eof()
        except Exception:  # noqa: BLE001
            pass
        try:
            self._writer.close()
            await self._writer.wait_closed()
        except Exception:  # noqa: BLE001
            pass
        logger.debug("Connection to %s closed", self.peername)

    def abort(self) -> None:
        """Close without waiting, for use from synchronous code.

        A pending :meth:`receive` returns ``None`` (EOF).
        """
        if self._closed:
            return
        self._closed = True
        try:
            if not self._reader.at_eof():
                self._reader.feed_eof()
        except Exception:  # noqa: BLE001
            pass
        try:
            self._writer.close()
        except Exception:  # noqa: BLE001
            pass
        logger.debug("Connection to %s aborted", self.peername)

    # ---- dunder ------------------------------------------------------

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"PanelConnection({self.peername}, {state})"
