"""
CONNECT tunneling through an HTTP(S) forward proxy.

    - `build_tunnel_request` turns a destination into the CONNECT request for the proxy.
    - `HttpTunnel` negotiates the tunnel and hands out the raw tunneled stream.
    - `HttpsTunnel` does the same, but upgrades the stream with TLS to the destination first.
"""

import asyncio
import base64
import logging
import ssl
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import SplitResult

from proxyagent import exceptions
from proxyagent.connection import Connection
from proxyagent.net import http1
from proxyagent.net import proxy_spec
from proxyagent.net import tls
from proxyagent.options import Destination
from proxyagent.options import ProxyRequestOptions
from proxyagent.utils import human

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TunnelRequest:
    """A fully specified CONNECT request, addressed to the proxy."""

    host: str
    """The proxy's hostname."""
    port: int
    """The proxy's port."""
    path: str
    """The tunnel target in authority form (`host:port`), not a URL path."""
    headers: tuple[tuple[str, str], ...]
    timeout: float | None = None
    servername: str | None = None
    """Server name for the TLS handshake with the proxy. Only set for https:// proxies."""
    ca: tuple[str, ...] = ()
    reject_unauthorized: bool = True
    method: str = "CONNECT"
    set_host: bool = False
    """The Host header is part of `headers` already and must not be derived from the proxy address."""

    def get_header(self, name: str) -> str | None:
        name = name.lower()
        for k, v in self.headers:
            if k.lower() == name:
                return v
        return None


def build_tunnel_request(
    proxy: proxy_spec.ProxySpec,
    request_options: ProxyRequestOptions,
    destination: Destination,
    *,
    keep_alive: bool,
) -> TunnelRequest:
    target = destination.authority

    computed = [
        ("Host", target),
        ("Connection", "keep-alive" if keep_alive else "close"),
    ]
    if proxy.has_credentials:
        username, password = proxy.credentials()
        token = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
        computed.append(("Proxy-Authorization", f"Basic {token}"))

    # computed headers win over caller-supplied ones with the same name,
    # caller-supplied ones are kept for everything else.
    overridden = {name.lower() for name, _ in computed}
    headers = [(k, v) for k, v in request_options.headers if k.lower() not in overridden]
    headers.extend(computed)

    return TunnelRequest(
        host=proxy.host,
        port=proxy.port,
        path=target,
        headers=tuple(headers),
        timeout=destination.timeout or None,
        # Necessary for the TLS check with the proxy to succeed.
        servername=proxy.host if proxy.scheme == "https" else None,
        ca=request_options.ca,
        reject_unauthorized=request_options.reject_unauthorized,
    )


class TunnelAttempt:
    """
    The in-flight state of one CONNECT negotiation.
    Owns the stream to the proxy until it is either handed out or aborted.
    """

    reader: asyncio.StreamReader | None = None
    writer: asyncio.StreamWriter | None = None

    def __init__(self, request: TunnelRequest, destination: Destination):
        self.request = request
        self.destination = destination
        self.timestamp_start = time.time()

    def abort(self) -> None:
        if self.writer is not None:
            self.writer.transport.abort()


class HttpTunnel:
    """
    Connector that tunnels to plain HTTP destinations.
    The stream it hands out is the raw tunneled stream, no further protocol is layered on top.
    """

    proxy: proxy_spec.ProxySpec
    request_options: ProxyRequestOptions
    keep_alive: bool

    def __init__(
        self,
        proxy: str | SplitResult | proxy_spec.ProxySpec,
        request_options: ProxyRequestOptions | Mapping[str, Any] | None = None,
        *,
        keep_alive: bool = False,
    ):
        self.proxy = proxy_spec.from_url(proxy)
        self.request_options = ProxyRequestOptions.from_any(request_options)
        self.keep_alive = keep_alive

    def __repr__(self):
        return f"{type(self).__name__}({self.proxy})"

    async def create_connection(self, destination: Destination) -> Connection:
        """
        Open a new tunnel to `destination`.

        *Raises:*
         - BadTunnelResponse, if the proxy does not answer with 200.
         - ProxyTimeout, if the proxy does not answer within `destination.timeout`.
         - TunnelProtocolError, if the proxy's answer is not valid HTTP/1.
         - OSError, if the proxy cannot be reached.
        """
        request = build_tunnel_request(
            self.proxy, self.request_options, destination, keep_alive=self.keep_alive
        )
        conn = await self.open_tunnel(TunnelAttempt(request, destination))
        return await self.tunnel_established(conn, destination)

    async def open_tunnel(self, attempt: TunnelAttempt) -> Connection:
        timeout = asyncio.timeout(attempt.request.timeout)
        try:
            async with timeout:
                return await self._negotiate(attempt)
        except TimeoutError as e:
            attempt.abort()
            if timeout.expired():
                raise exceptions.ProxyTimeout() from e
            raise
        except BaseException:
            attempt.abort()
            raise

    async def _negotiate(self, attempt: TunnelAttempt) -> Connection:
        request = attempt.request
        proxyaddr = human.format_address((request.host, request.port))

        if self.proxy.scheme == "https":
            ssl_context: ssl.SSLContext | None = tls.create_client_context(
                ca=request.ca, verify=request.reject_unauthorized
            )
        else:
            ssl_context = None
        logger.debug(f"connecting to {proxyaddr} for CONNECT {request.path}")
        attempt.reader, attempt.writer = await asyncio.open_connection(
            request.host,
            request.port,
            ssl=ssl_context,
            server_hostname=request.servername,
        )

        handshake = http1.ConnectHandshake()
        attempt.writer.write(handshake.send_request(request.path, request.headers))
        await attempt.writer.drain()

        response = None
        while response is None:
            try:
                head = await attempt.reader.readuntil(http1.HEAD_TERMINATOR)
            except asyncio.IncompleteReadError as e:
                raise exceptions.TunnelProtocolError(
                    f"{proxyaddr} closed the connection during the CONNECT handshake."
                ) from e
            except asyncio.LimitOverrunError as e:
                raise exceptions.TunnelProtocolError(
                    f"Response from {proxyaddr} exceeds the maximum header size."
                ) from e
            try:
                response = handshake.receive_head(head)
            except ValueError as e:
                raise exceptions.TunnelProtocolError(
                    f"Error connecting to {proxyaddr}: {e}"
                ) from e

        if not response.tunnel_established:
            raise exceptions.BadTunnelResponse(response.status_code, response.reason)

        conn = Connection(
            reader=attempt.reader,
            writer=attempt.writer,
            address=attempt.destination.address,
            via=self.proxy.address,
            timestamp_start=attempt.timestamp_start,
            timestamp_tunnel_setup=time.time(),
        )
        logger.debug(
            f"tunnel to {request.path} via {proxyaddr} established "
            f"({human.pretty_duration(conn.timestamp_tunnel_setup - conn.timestamp_start)})"
        )
        return conn

    async def tunnel_established(
        self, conn: Connection, destination: Destination
    ) -> Connection:
        """Called once the proxy has confirmed the tunnel. Returns the connection to hand out."""
        return conn


class HttpsTunnel(HttpTunnel):
    """
    Connector that tunnels to HTTPS destinations.
    Once the tunnel is up, we perform a client-side TLS handshake with the destination over it.
    """

    async def tunnel_established(
        self, conn: Connection, destination: Destination
    ) -> Connection:
        if destination.ssl_context is not None:
            context = destination.ssl_context
        else:
            context = tls.create_client_context(
                ca=destination.ca,
                verify=destination.reject_unauthorized,
                alpn_protocols=destination.alpn_protocols,
            )
        # SNI is the destination, not the proxy.
        servername = destination.servername or destination.host
        try:
            await conn.writer.start_tls(context, server_hostname=servername)
        except BaseException:
            conn.abort()
            raise

        ssl_object: ssl.SSLObject = conn.writer.get_extra_info("ssl_object")
        conn.sni = servername
        if alpn := ssl_object.selected_alpn_protocol():
            conn.alpn = alpn.encode()
        conn.tls_version = ssl_object.version()
        if cipher := ssl_object.cipher():
            conn.cipher = cipher[0]
        conn.timestamp_tls_setup = time.time()
        logger.debug(f"TLS established with {servername} through {conn!r}")
        return conn
