import asyncio
import time
from dataclasses import dataclass
from dataclasses import field

from proxyagent.utils import human

Address = tuple[str, int]


@dataclass(eq=False)
class Connection:
    """
    A stream to a destination, tunneled through a proxy.

    Ownership of the reader and writer passes to whoever receives this object.
    """

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    address: Address
    """The destination's `(host, port)` tuple, as requested."""
    via: Address
    """The proxy's `(host, port)` tuple."""

    sni: str | None = None
    """The Server Name Indication sent in the ClientHello to the destination, if any."""
    alpn: bytes | None = None
    """The application-layer protocol negotiated with the destination."""
    tls_version: str | None = None
    cipher: str | None = None

    timestamp_start: float = field(default_factory=time.time)
    timestamp_tunnel_setup: float | None = None
    """*Timestamp:* The proxy has confirmed the tunnel."""
    timestamp_tls_setup: float | None = None
    """*Timestamp:* TLS handshake with the destination has been completed successfully."""

    @property
    def tls_established(self) -> bool:
        return self.timestamp_tls_setup is not None

    @property
    def closed(self) -> bool:
        return self.writer.is_closing() or self.reader.at_eof()

    def close(self) -> None:
        self.writer.close()

    def abort(self) -> None:
        """Close the underlying transport immediately, discarding buffered data."""
        self.writer.transport.abort()

    async def wait_closed(self) -> None:
        try:
            await self.writer.wait_closed()
        except OSError:
            pass

    def __repr__(self):
        tls_state = ", tls" if self.tls_established else ""
        return (
            f"Connection({human.format_address(self.address)} "
            f"via {human.format_address(self.via)}{tls_state})"
        )
