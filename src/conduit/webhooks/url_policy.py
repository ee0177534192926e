"""Outbound URL policy for webhook targets.

Webhook URLs are tenant-supplied, so every delivery is a server-side request
to an address chosen by a customer. Targets on loopback, private, link-local
or otherwise internal addresses are refused unless explicitly allowed.
"""

from __future__ import annotations

import asyncio
import ipaddress
import secrets
import socket
from urllib.parse import urlparse

from conduit.exceptions import UnsafeURLError
from conduit.logging import get_logger

logger = get_logger(__name__)

ALLOWED_SCHEMES = frozenset({"http", "https"})

BLOCKED_HOSTNAMES = frozenset({"localhost", "localhost.localdomain", "ip6-localhost"})

# Cloud metadata endpoint, reachable from most VMs
METADATA_ADDRESS = "169.254.169.254"


def generate_webhook_secret() -> str:
    """Generate a signing secret: 32 random bytes, hex encoded."""
    return secrets.token_hex(32)


def is_private_address(ip_str: str) -> bool:
    """Check if an IP address is private, loopback, or otherwise internal.

    Args:
        ip_str: IP address string (IPv4 or IPv6).

    Returns:
        True if the address is internal, False if public. Unparseable
        input counts as internal.
    """
    try:
        ip = ipaddress.ip_address(ip_str.split("%", 1)[0])
    except ValueError:
        return True
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
        or str(ip) == METADATA_ADDRESS
    )


def _is_ip_literal(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True


def validate_webhook_url(url: str, *, allow_private: bool = False) -> str:
    """Validate a webhook target URL without network access.

    Checks:
    1. Scheme is http or https
    2. A hostname is present
    3. Unless ``allow_private``: the host is not localhost, a ``.local``
       name, or a private/loopback IP literal

    Returns:
        The URL unchanged.

    Raises:
        UnsafeURLError: If the URL fails any check.
    """
    if not url:
        raise UnsafeURLError("Empty URL")

    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise UnsafeURLError(f"Invalid URL format: {e}") from e

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise UnsafeURLError(f"URL must use http or https, got: {parsed.scheme or 'none'}")

    hostname = (parsed.hostname or "").lower().rstrip(".")
    if not hostname:
        raise UnsafeURLError("URL has no hostname")

    if allow_private:
        return url

    if hostname in BLOCKED_HOSTNAMES or hostname.endswith(".localhost"):
        raise UnsafeURLError(f"Local hostnames are not allowed: {hostname}")
    if hostname.endswith(".local"):
        raise UnsafeURLError(f"mDNS hostnames are not allowed: {hostname}")
    if _is_ip_literal(hostname) and is_private_address(hostname):
        raise UnsafeURLError(f"Private addresses are not allowed: {hostname}")

    return url


async def ensure_safe_target(
    url: str,
    *,
    allow_private: bool = False,
    resolve_dns: bool = True,
) -> None:
    """Validate a URL and, optionally, every address its hostname resolves to.

    DNS failures are not policy violations; the delivery attempt will fail
    with a connection error instead.

    Raises:
        UnsafeURLError: If the URL or any resolved address is not allowed.
    """
    validate_webhook_url(url, allow_private=allow_private)
    if allow_private or not resolve_dns:
        return

    parsed = urlparse(url)
    hostname = parsed.hostname or ""
    if _is_ip_literal(hostname):
        return

    port = parsed.port or (443 if parsed.scheme.lower() == "https" else 80)
    loop = asyncio.get_running_loop()
    try:
        addr_info = await loop.getaddrinfo(hostname, port, proto=socket.IPPROTO_TCP)
    except socket.gaierror as e:
        logger.debug("Webhook target did not resolve", hostname=hostname, error=str(e))
        return

    for _family, _type, _proto, _canonname, sockaddr in addr_info:
        address = str(sockaddr[0])
        if is_private_address(address):
            raise UnsafeURLError(f"URL resolves to private address: {address}")


__all__ = [
    "ensure_safe_target",
    "generate_webhook_secret",
    "is_private_address",
    "validate_webhook_url",
]
