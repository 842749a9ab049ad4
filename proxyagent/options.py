import ssl
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from proxyagent.net import check

PROXY_OPTION_KEYS = frozenset({"proxy", "proxy_request_options"})


@dataclass(frozen=True)
class ProxyRequestOptions:
    """
    Extra settings applied to every CONNECT request an agent sends.
    """

    ca: tuple[str, ...] = ()
    """Additional trusted CA certificates (PEM) for TLS connections to the proxy."""
    headers: tuple[tuple[str, str], ...] = ()
    """Extra headers to send with the CONNECT request."""
    reject_unauthorized: bool = True
    """If False, the proxy's TLS certificate is not validated."""

    def __post_init__(self):
        # Accept lists and mappings, but store hashable tuples.
        object.__setattr__(self, "ca", tuple(self.ca))
        headers = self.headers
        if isinstance(headers, Mapping):
            headers = headers.items()
        headers = tuple((str(k), str(v)) for k, v in headers)
        for name, _ in headers:
            if not check.is_valid_header_name(name):
                raise ValueError(f"Invalid header name: {name!r}")
        object.__setattr__(self, "headers", headers)

    @classmethod
    def from_any(
        cls, value: "ProxyRequestOptions | Mapping[str, Any] | None"
    ) -> "ProxyRequestOptions":
        if value is None:
            return cls()
        if isinstance(value, ProxyRequestOptions):
            return value
        unknown = set(value) - {"ca", "headers", "reject_unauthorized"}
        if unknown:
            raise ValueError(
                f"Unknown proxy request options: {', '.join(sorted(unknown))}"
            )
        return cls(**value)


@dataclass(frozen=True)
class Destination:
    """
    Where a single connection request should end up.
    """

    host: str
    port: int
    timeout: float | None = None
    """Seconds to wait for the proxy's CONNECT response. None or 0 disables the timeout."""

    # TLS settings, only used by the secure tunnel.
    servername: str | None = None
    """Server name for SNI and certificate validation. Defaults to `host`."""
    ca: tuple[str, ...] = ()
    reject_unauthorized: bool = True
    alpn_protocols: tuple[str, ...] = ()
    ssl_context: ssl.SSLContext | None = field(default=None, compare=False)
    """A ready-made context, takes precedence over `ca`, `reject_unauthorized` and `alpn_protocols`."""

    def __post_init__(self):
        if not check.is_valid_host(self.host):
            raise ValueError(f"Invalid hostname: {self.host}")
        if not check.is_valid_port(self.port):
            raise ValueError(f"Invalid port: {self.port}")
        if self.timeout is not None and self.timeout < 0:
            raise ValueError(f"Invalid timeout: {self.timeout}")
        object.__setattr__(self, "ca", tuple(self.ca))
        object.__setattr__(self, "alpn_protocols", tuple(self.alpn_protocols))

    @property
    def address(self) -> tuple[str, int]:
        return self.host, self.port

    @property
    def authority(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def get_agent_options(options: Mapping[str, Any]) -> dict[str, Any]:
    """
    Strip the proxy-specific keys from an agent's construction options,
    leaving only what the connection pool itself understands.
    """
    return {k: v for k, v in options.items() if k not in PROXY_OPTION_KEYS}
