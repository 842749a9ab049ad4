import ipaddress
import re

# A DNS label, with underscores allowed.
_label_valid = re.compile(r"[A-Z\d\-_]{1,63}$", re.IGNORECASE)
_token_valid = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Z]+$", re.IGNORECASE)


def is_valid_host(host: str) -> bool:
    """
    Checks if the passed string is a valid DNS hostname or an IPv4/IPv6 address.
    Used for both the proxy and the CONNECT target.
    """
    if not host:
        return False
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        pass
    try:
        ascii_host = host.encode("idna").decode("ascii")
    except UnicodeError:
        return False
    # RFC1035: 255 bytes or less.
    if len(ascii_host) > 255:
        return False
    if ascii_host.endswith("."):
        ascii_host = ascii_host[:-1]
    return all(_label_valid.match(x) for x in ascii_host.split("."))


def is_valid_port(port: int) -> bool:
    return 0 < port <= 65535


def is_valid_header_name(name: str) -> bool:
    """RFC 7230 token, which rules out whitespace, colons and line breaks."""
    return bool(_token_valid.match(name))
