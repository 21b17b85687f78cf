from __future__ import annotations

"""URL validation that keeps content fetches off private networks."""

import asyncio
import ipaddress
import logging
import socket
from typing import Awaitable, Callable, Iterable
from urllib.parse import urlsplit

from bookmark_rag.rag.errors import BlockedURLError

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = frozenset({"http", "https"})

BLOCKED_NETWORKS = tuple(
    ipaddress.ip_network(value)
    for value in (
        "0.0.0.0/8",
        "127.0.0.0/8",
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "169.254.0.0/16",
        "::/128",
        "::1/128",
        "fe80::/10",
        "fc00::/7",
    )
)


def parse_allowed_domains(raw: str) -> tuple[str, ...]:
    """Parse a comma separated allow-list of domains."""
    return tuple(
        value.strip().lower().lstrip(".") for value in raw.split(",") if value.strip()
    )


def _literal_address(hostname: str) -> str | None:
    """Return the IP a hostname denotes without DNS, or None for real names.

    Covers the shorthand IPv4 forms the system resolver accepts, such as
    ``127.1``, ``0x7f000001`` and ``2130706433``.
    """
    try:
        return str(ipaddress.ip_address(hostname.split("%", 1)[0]))
    except ValueError:
        pass
    if "." not in hostname and not hostname.isdigit() and not hostname.startswith("0x"):
        return None
    try:
        return socket.inet_ntoa(socket.inet_aton(hostname))
    except OSError:
        return None


def is_blocked_address(address: str) -> bool:
    """Return True when an IP literal falls in a loopback, private or link-local range."""
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return any(ip.version == network.version and ip in network for network in BLOCKED_NETWORKS)


def _is_local_name(hostname: str) -> bool:
    return hostname == "localhost" or hostname.endswith(".localhost")


def _domain_allowed(hostname: str, allowed_domains: Iterable[str]) -> bool:
    return any(
        hostname == domain or hostname.endswith(f".{domain}") for domain in allowed_domains
    )


async def resolve_host(hostname: str) -> list[str]:
    """Resolve a hostname on the event loop's executor."""
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(hostname, None)
    except socket.gaierror as exc:
        raise BlockedURLError(f"Unable to resolve host: {hostname}") from exc
    return sorted({str(info[4][0]) for info in infos})


def validate_url(url: str, allowed_domains: Iterable[str] = ()) -> str:
    """Validate a user supplied URL and return its lowercase hostname.

    Raises BlockedURLError for non-http(s) schemes, missing hosts, localhost
    names, private or loopback IP literals (shorthand IPv4 forms included),
    and hosts outside ``allowed_domains`` when one is configured. No DNS
    lookups happen here; see ``validate_url_resolved``.
    """
    try:
        parts = urlsplit(url.strip())
        hostname = (parts.hostname or "").lower().rstrip(".")
    except ValueError as exc:
        raise BlockedURLError(f"Invalid URL format: {exc}") from exc
    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise BlockedURLError(f"Only HTTP(S) protocols are allowed, got: {parts.scheme or 'none'}")
    if not hostname:
        raise BlockedURLError("URL has no hostname")
    if _is_local_name(hostname):
        raise BlockedURLError(f"Access to local host blocked: {hostname}")
    literal = _literal_address(hostname)
    if literal is not None and is_blocked_address(literal):
        raise BlockedURLError(f"Access to private IP address blocked: {hostname}")

    domains = tuple(allowed_domains)
    if domains and not _domain_allowed(hostname, domains):
        raise BlockedURLError(f"Domain not in allow-list: {hostname}")
    return hostname


async def validate_url_resolved(
    url: str,
    allowed_domains: Iterable[str] = (),
    resolve_dns: bool = True,
    resolver: Callable[[str], Awaitable[list[str]]] = resolve_host,
) -> str:
    """Run ``validate_url`` and then check every address the host resolves to."""
    hostname = validate_url(url, allowed_domains)
    if not resolve_dns or _literal_address(hostname) is not None:
        return hostname
    for address in await resolver(hostname):
        if is_blocked_address(address):
            logger.warning(
                "url_resolves_to_private_address",
                extra={"hostname": hostname, "address": address},
            )
            raise BlockedURLError(f"Host {hostname} resolves to private address {address}")
    return hostname
