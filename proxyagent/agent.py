"""
Connection pooling for proxied connections.

The pool does not know how connections are made. It holds a single `Connector`
(plain or secure CONNECT tunnel) and asks it for a new stream whenever no idle
connection can be reused.
"""

import asyncio
import collections
import dataclasses
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from typing import Protocol

from proxyagent import tunnel
from proxyagent.connection import Address
from proxyagent.connection import Connection
from proxyagent.net import proxy_spec
from proxyagent.options import Destination
from proxyagent.options import get_agent_options

logger = logging.getLogger(__name__)


class Connector(Protocol):
    """Anything that can produce a ready-to-use stream for a destination."""

    async def create_connection(
        self, destination: Destination
    ) -> Connection:  # pragma: no cover
        ...


class Agent:
    connector: Connector
    keep_alive: bool
    max_sockets: int | None
    max_free_sockets: int
    timeout: float | None
    max_conns: collections.defaultdict[Address, asyncio.Semaphore]
    free_conns: collections.defaultdict[Address, collections.deque[Connection]]

    def __init__(
        self,
        connector: Connector,
        *,
        keep_alive: bool = False,
        max_sockets: int | None = None,
        max_free_sockets: int = 256,
        timeout: float | None = None,
    ) -> None:
        """
        Args:
            connector: Opens new connections.
            keep_alive: Keep released connections around for reuse.
            max_sockets: Maximum number of concurrent connections per destination. None means unlimited.
            max_free_sockets: Maximum number of idle connections kept per destination.
            timeout: Default CONNECT timeout in seconds for destinations that do not specify one.
        """
        if max_sockets is not None and max_sockets < 1:
            raise ValueError(f"Invalid max_sockets: {max_sockets}")
        if max_free_sockets < 0:
            raise ValueError(f"Invalid max_free_sockets: {max_free_sockets}")
        self.connector = connector
        self.keep_alive = keep_alive
        self.max_sockets = max_sockets
        self.max_free_sockets = max_free_sockets
        self.timeout = timeout
        # only consulted if max_sockets is set.
        self.max_conns = collections.defaultdict(lambda: asyncio.Semaphore(max_sockets))
        self.free_conns = collections.defaultdict(collections.deque)

    def __repr__(self):
        return f"{type(self).__name__}({self.connector!r})"

    async def create_connection(self, destination: Destination) -> Connection:
        """Open a fresh connection to `destination`, bypassing the pool."""
        if destination.timeout is None and self.timeout:
            destination = dataclasses.replace(destination, timeout=self.timeout)
        return await self.connector.create_connection(destination)

    async def acquire(self, destination: Destination) -> Connection:
        """
        Get a connection to `destination`, reusing an idle one if possible.
        Every acquired connection must be passed to `release` eventually.
        """
        if self.max_sockets is not None:
            await self.max_conns[destination.address].acquire()
        try:
            free = self.free_conns[destination.address]
            while free:
                conn = free.popleft()
                if not conn.closed:
                    logger.debug(f"reusing {conn!r}")
                    return conn
            return await self.create_connection(destination)
        except BaseException:
            if self.max_sockets is not None:
                self.max_conns[destination.address].release()
            raise

    def release(self, conn: Connection, *, reusable: bool = True) -> None:
        """
        Hand a connection back to the pool.
        It is kept for reuse if the agent is keep-alive, the connection is still open and there is room.
        """
        if self.max_sockets is not None:
            self.max_conns[conn.address].release()
        free = self.free_conns[conn.address]
        if (
            reusable
            and self.keep_alive
            and not conn.closed
            and len(free) < self.max_free_sockets
        ):
            free.append(conn)
        else:
            logger.debug(f"closing {conn!r}")
            conn.close()

    @asynccontextmanager
    async def connection(self, destination: Destination) -> AsyncIterator[Connection]:
        conn = await self.acquire(destination)
        try:
            yield conn
        except BaseException:
            self.release(conn, reusable=False)
            raise
        else:
            self.release(conn)

    async def close(self) -> None:
        """Close all idle connections."""
        conns = [conn for free in self.free_conns.values() for conn in free]
        self.free_conns.clear()
        for conn in conns:
            conn.close()
        await asyncio.gather(*(conn.wait_closed() for conn in conns))

    async def __aenter__(self) -> "Agent":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class HttpProxyAgent(Agent):
    """
    Pool of tunneled connections to plain HTTP destinations.

    Takes `proxy` (required), `proxy_request_options` and all options `Agent` accepts.
    """

    connector_class: type[tunnel.HttpTunnel] = tunnel.HttpTunnel
    connector: tunnel.HttpTunnel

    def __init__(self, **options: Any) -> None:
        if options.get("proxy") is None:
            raise ValueError("Missing required option: proxy")
        agent_options = get_agent_options(options)
        connector = self.connector_class(
            options["proxy"],
            options.get("proxy_request_options"),
            keep_alive=agent_options.get("keep_alive", False),
        )
        super().__init__(connector, **agent_options)

    @property
    def proxy(self) -> proxy_spec.ProxySpec:
        return self.connector.proxy


class HttpsProxyAgent(HttpProxyAgent):
    """
    Pool of tunneled connections to HTTPS destinations.
    Connections are TLS-upgraded to the destination before they are handed out.
    """

    connector_class = tunnel.HttpsTunnel
