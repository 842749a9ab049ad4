import os
import ssl
from functools import lru_cache
from pathlib import Path

import certifi

DEFAULT_MIN_VERSION = ssl.TLSVersion.TLSv1_2


def make_master_secret_logger(filename: str | None) -> Path | None:
    if filename:
        path = Path(filename).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        return path
    return None


log_master_secret = make_master_secret_logger(
    os.getenv("PROXYAGENT_SSLKEYLOGFILE") or os.getenv("SSLKEYLOGFILE")
)


@lru_cache(256)
def create_client_context(
    *,
    ca: tuple[str, ...] = (),
    verify: bool = True,
    alpn_protocols: tuple[str, ...] = (),
    min_version: ssl.TLSVersion = DEFAULT_MIN_VERSION,
) -> ssl.SSLContext:
    """
    Create a client-side TLS context, used both for TLS connections to the proxy itself
    and for the TLS handshake with the destination inside an established tunnel.

    Args:
        ca: Additional trusted CA certificates in PEM format. These are trusted on top of
            the certifi bundle.
        verify: If False, neither the certificate chain nor the hostname are validated.
        alpn_protocols: ALPN protocols to offer in the ClientHello.
        min_version: The minimum TLS version we are willing to speak.

    *Raises:*
     - ValueError, if one of the extra CA certificates cannot be loaded.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.minimum_version = min_version

    if verify:
        context.load_verify_locations(cafile=certifi.where())
        for pem in ca:
            try:
                context.load_verify_locations(cadata=pem)
            except ssl.SSLError as e:
                raise ValueError(f"Cannot load trusted certificate: {e}") from e
    else:
        # check_hostname needs to be disabled before verify_mode can be relaxed.
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    if alpn_protocols:
        context.set_alpn_protocols(list(alpn_protocols))

    # SSLKEYLOGFILE
    if log_master_secret:
        context.keylog_filename = str(log_master_secret)

    return context
