"""
The HTTP/1 side of a CONNECT handshake, implemented on top of h11.

The proxy's response head is read with `StreamReader.readuntil`, so that no bytes that
belong to the tunnel are consumed by the handshake.
"""

from collections.abc import Iterable
from dataclasses import dataclass

import h11

HEAD_TERMINATOR = b"\r\n\r\n"


@dataclass(frozen=True)
class ResponseHead:
    http_version: str
    status_code: int
    reason: str
    headers: tuple[tuple[str, str], ...]

    @property
    def tunnel_established(self) -> bool:
        return self.status_code == 200


class ConnectHandshake:
    """
    Client half of a single CONNECT exchange.

    Call `send_request` once, then feed response heads into `receive_head` until it
    returns the final (non-1xx) response.
    """

    def __init__(self) -> None:
        self._conn = h11.Connection(our_role=h11.CLIENT)

    def send_request(self, target: str, headers: Iterable[tuple[str, str]]) -> bytes:
        """
        Assemble `CONNECT <target> HTTP/1.1` with the given headers.

        *Raises:*
         - ValueError, if h11 rejects the target or one of the headers.
        """
        try:
            data = self._conn.send(
                h11.Request(method="CONNECT", target=target, headers=list(headers))
            )
            data += self._conn.send(h11.EndOfMessage())
        except h11.LocalProtocolError as e:
            raise ValueError(f"Invalid CONNECT request: {e}") from e
        return data

    def receive_head(self, data: bytes) -> ResponseHead | None:
        """
        Parse one response head.

        Returns:
            The final response, or None if `data` only held an informational (1xx) response.

        *Raises:*
         - ValueError, if the data is not a valid HTTP/1 response head.
        """
        self._conn.receive_data(data)
        try:
            event = self._conn.next_event()
        except h11.RemoteProtocolError as e:
            raise ValueError(f"Invalid response to CONNECT: {e}") from e
        if isinstance(event, h11.InformationalResponse):
            return None
        if not isinstance(event, h11.Response):
            raise ValueError(f"Invalid response to CONNECT: unexpected {event!r}")
        return ResponseHead(
            http_version=f"HTTP/{event.http_version.decode()}",
            status_code=event.status_code,
            reason=event.reason.decode("latin-1"),
            headers=tuple(
                (name.decode("latin-1"), value.decode("latin-1"))
                for name, value in event.headers
            ),
        )
