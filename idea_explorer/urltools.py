"""URL helpers and the webhook destination validator.

The validator is deliberately syntactic: it inspects the scheme, IP
literals and hostname suffixes but never resolves DNS, since a
resolution-time answer can be rebound before delivery.
"""
from __future__ import annotations

import ipaddress
from urllib.parse import urlparse

from .errors import ValidationFault


BLOCKED_HOST_SUFFIXES = (
    "localhost",
    ".localhost",
    ".local",
    ".localdomain",
    ".internal",
    ".home.arpa",
    ".lan",
    ".test",
    ".example",
    ".invalid",
)

IPV4_BLOCKS = tuple(
    ipaddress.IPv4Network(cidr)
    for cidr in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "100.64.0.0/10",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.0.0.0/24",
        "192.0.2.0/24",
        "192.168.0.0/16",
        "198.18.0.0/15",
        "198.51.100.0/24",
        "203.0.113.0/24",
    )
)

IPV6_BLOCKS = tuple(
    ipaddress.IPv6Network(cidr)
    for cidr in (
        "::/128",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
        "fec0::/10",
        "2001:db8::/32",
    )
)


def host(url: str) -> str:
    try:
        return urlparse(url or "").hostname or ""
    except Exception:
        return ""


def _ipv4_blocked(addr: ipaddress.IPv4Address) -> bool:
    return any(addr in block for block in IPV4_BLOCKS)


def _ipv6_blocked(addr: ipaddress.IPv6Address) -> bool:
    if addr.ipv4_mapped is not None:
        return _ipv4_blocked(addr.ipv4_mapped)
    return any(addr in block for block in IPV6_BLOCKS)


def _dotted_quad(hostname: str):
    """Lenient IPv4 parse for forms like ``010.0.0.1`` that ipaddress rejects."""
    parts = hostname.split(".")
    if len(parts) != 4 or not all(p.isdigit() for p in parts):
        return None
    octets = [int(p, 10) for p in parts]
    if any(o > 255 for o in octets):
        # All-numeric but not an address: treat as the most restrictive case
        return ipaddress.IPv4Address("0.0.0.0")
    return ipaddress.IPv4Address(".".join(str(o) for o in octets))


def _suffix_blocked(hostname: str) -> bool:
    for suffix in BLOCKED_HOST_SUFFIXES:
        bare = suffix.lstrip(".")
        if hostname == bare or hostname.endswith(suffix):
            return True
    return False


def is_safe_destination(url: str) -> bool:
    """Return True when ``url`` is an acceptable webhook target. Never raises."""
    try:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            return False
        hostname = (parsed.hostname or "").lower().rstrip(".")
        if not hostname:
            return False

        try:
            addr = ipaddress.ip_address(hostname)
        except ValueError:
            addr = _dotted_quad(hostname)

        if isinstance(addr, ipaddress.IPv4Address):
            return not _ipv4_blocked(addr)
        if isinstance(addr, ipaddress.IPv6Address):
            return not _ipv6_blocked(addr)
        if ":" in hostname:
            # Bracketed but unparseable literal
            return False

        # Single-label names resolve against local search domains
        if "." not in hostname:
            return False
        return not _suffix_blocked(hostname)
    except Exception:
        return False


def validate_destination(url: str) -> str:
    if not is_safe_destination(url):
        raise ValidationFault(f"Invalid webhook URL: {url}")
    return url
