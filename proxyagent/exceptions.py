"""
We use builtin exceptions wherever they fit and specialize where necessary:

- Invalid configuration raises `ValueError`.
- Transport errors (`OSError`) and TLS errors (`ssl.SSLError`) are propagated unchanged.
- Everything that is specific to CONNECT tunneling is a `ProxyAgentException`.
"""


class ProxyAgentException(Exception):
    """
    Base class for all exceptions thrown by proxyagent.
    """

    def __init__(self, message=None):
        super().__init__(message)


class BadTunnelResponse(ProxyAgentException):
    """The proxy answered the CONNECT request with something other than 200."""

    def __init__(self, status_code: int, reason: str = ""):
        super().__init__(f"Bad response: {status_code}")
        self.status_code = status_code
        self.reason = reason


class ProxyTimeout(ProxyAgentException, TimeoutError):
    """The proxy did not answer the CONNECT request in time."""

    def __init__(self, message="Proxy timeout"):
        super().__init__(message)


class TunnelProtocolError(ProxyAgentException):
    """The proxy sent an invalid response or hung up during the CONNECT handshake."""
