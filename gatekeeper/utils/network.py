"""Client address helpers."""
from __future__ import annotations

import ipaddress
import string
from typing import Iterable, Mapping, Optional

_KEY_SAFE = frozenset(string.ascii_letters + string.digits + ":.")

# Checked in order when forwarded headers are trusted.
FORWARDED_HEADERS = (
    "x-forwarded-for",
    "x-real-ip",
    "client-ip",
    "cf-connecting-ip",
    "x-forwarded",
    "forwarded-for",
    "forwarded",
)


def normalize_ip(value: Optional[str]) -> Optional[str]:
    """Return the canonical text form of an IPv4/IPv6 address, or ``None``."""

    if not value:
        return None
    candidate = value.strip()
    if candidate.startswith("[") and candidate.endswith("]"):
        candidate = candidate[1:-1]
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def is_valid_ip(value: Optional[str]) -> bool:
    """Return ``True`` when ``value`` parses as an IP address."""

    return normalize_ip(value) is not None


def storage_key(identifier: str) -> str:
    """Encode an identifier into a file-name safe key.

    Letters, digits, ``:`` and ``.`` pass through; every other byte becomes
    ``_xx``. ``_`` is always escaped, so distinct identifiers never share a key.
    """

    out = []
    for char in identifier:
        if char in _KEY_SAFE:
            out.append(char)
        else:
            out.extend(f"_{byte:02x}" for byte in char.encode("utf-8"))
    return "".join(out)


def _strip_port(value: str) -> str:
    """Drop a trailing ``:port`` from ``1.2.3.4:80`` or ``[2001:db8::1]:80``."""

    if value.startswith("["):
        host, bracket, _ = value[1:].partition("]")
        return host if bracket else value
    # Bare IPv6 has several colons and never carries a port.
    if value.count(":") == 1:
        return value.partition(":")[0]
    return value


def _forwarded_candidates(header: str, value: str) -> Iterable[str]:
    for part in value.split(","):
        part = part.strip()
        if header == "forwarded" and part:
            # RFC 7239: for="[2001:db8::1]:4711";proto=http
            for token in part.split(";"):
                key, _, raw = token.strip().partition("=")
                if key.lower() == "for":
                    yield _strip_port(raw.strip().strip('"'))
            continue
        yield _strip_port(part)


def resolve_client_ip(
    remote_addr: Optional[str],
    headers: Mapping[str, str],
    *,
    trust_x_forwarded: bool = False,
    trusted_proxies: Iterable[str] = (),
) -> Optional[str]:
    """Pick the client address for a request.

    Without ``trust_x_forwarded`` only the socket peer counts. With it, the
    first valid address in the forwarding headers wins, as long as the peer is
    one of ``trusted_proxies`` (an empty list trusts any peer).
    """

    remote = normalize_ip(remote_addr)
    if not trust_x_forwarded:
        return remote

    proxies = {normalize_ip(proxy) for proxy in trusted_proxies} - {None}
    if proxies and remote not in proxies:
        return remote

    lowered = {key.lower(): val for key, val in headers.items()}
    for header in FORWARDED_HEADERS:
        value = lowered.get(header)
        if not value:
            continue
        for candidate in _forwarded_candidates(header, value):
            normalized = normalize_ip(candidate)
            if normalized:
                return normalized
    return remote
