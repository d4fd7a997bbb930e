"""Input validation for webhook targets and cache namespace names."""

import ipaddress
import logging
import re
import socket
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")

# Ports of internal services a webhook must never reach
BLOCKED_PORTS = frozenset(
    {
        22,  # SSH
        23,  # Telnet
        25,  # SMTP
        3306,  # MySQL
        5432,  # PostgreSQL
        6379,  # Redis
        9200,  # Elasticsearch
        9300,  # Elasticsearch
        11211,  # Memcached
        27017,  # MongoDB
    }
)

LOCALHOST_NAMES = frozenset(
    {
        "localhost",
        "localhost.localdomain",
        "ip6-localhost",
        "ip6-loopback",
        "127.0.0.1",
        "::1",
        "0.0.0.0",
    }
)


class SSRFError(Exception):
    """Raised when a webhook URL points somewhere it must not."""

    pass


def _check_address(ip: str, hostname: str) -> None:
    address = ipaddress.ip_address(ip)
    if address.is_private or address.is_loopback or address.is_link_local:
        raise SSRFError(f"Private IP address not allowed: {ip} (resolved from {hostname})")
    if address.is_multicast or address.is_reserved or address.is_unspecified:
        raise SSRFError(f"Reserved IP address not allowed: {ip}")


def validate_url_for_ssrf(url: str, allow_private: bool = False) -> None:
    """Reject webhook URLs that could reach internal services.

    Every address the hostname resolves to is checked, not just the first.

    Args:
        url: The URL to validate
        allow_private: Skip DNS resolution and address checks (for testing only)

    Raises:
        SSRFError: If the URL is not an acceptable webhook target
    """
    parsed = urlparse(url)

    if parsed.scheme not in ALLOWED_SCHEMES:
        raise SSRFError(f"Scheme '{parsed.scheme}' not allowed. Only http:// and https:// are permitted.")

    try:
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
    except ValueError as e:
        raise SSRFError(f"Invalid port in URL: {e}")
    if port in BLOCKED_PORTS:
        raise SSRFError(f"Port {port} is blocked for security reasons")

    hostname = parsed.hostname
    if not hostname:
        raise SSRFError("No hostname in URL")
    if hostname.lower() in LOCALHOST_NAMES:
        raise SSRFError(f"Localhost access not allowed: {hostname}")

    if allow_private:
        return

    try:
        infos = socket.getaddrinfo(hostname, port, proto=socket.IPPROTO_TCP)
    except socket.gaierror as e:
        raise SSRFError(f"Cannot resolve hostname '{hostname}': {e}")

    for info in infos:
        _check_address(info[4][0], hostname)


# Cache namespace names: letters, digits, dot, hyphen, underscore
_CACHE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")
MAX_CACHE_NAME_LENGTH = 100


def validate_cache_name(name: str) -> str | None:
    """Validate a cache namespace name taken from a request path.

    Args:
        name: Raw namespace name

    Returns:
        The name if safe, None if invalid
    """
    if not name or not isinstance(name, str):
        return None

    if ".." in name or "/" in name or "\\" in name:
        logger.warning("Path traversal attempt in cache name: %s", name)
        return None

    if any(ord(c) < 32 for c in name):
        logger.warning("Control characters in cache name: %r", name)
        return None

    if len(name) > MAX_CACHE_NAME_LENGTH:
        logger.warning("Cache name too long: %s...", name[:MAX_CACHE_NAME_LENGTH])
        return None

    if not _CACHE_NAME_PATTERN.match(name):
        logger.warning("Invalid characters in cache name: %s", name)
        return None

    return name
