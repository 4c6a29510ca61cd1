"""
=============================================================================
IP ALLOW-LIST
=============================================================================

Decides, once per request and before routing, whether a client may be
served at all.

    allow = []                          → every client is authorized
    allow = ["127.0.0.1", "10.*.*.*"]   → only loopback and 10/8
    allow = ["192.168"]                 → any 192.168.x.y (prefix match)

PATTERN SYNTAX
──────────────
    A pattern is 1 to 4 dot-separated segments. Each segment is either a
    decimal octet (0-255) or "*", which matches any 1-3 digit octet.
    Segments are compared left to right; a shorter pattern matches every
    address that starts with it.

IPv4-mapped IPv6 addresses ("::ffff:10.0.0.1") are matched on their IPv4
part. Any other IPv6 address matches no pattern.

=============================================================================
"""

import re
from typing import Iterable, List, Tuple


_OCTET = re.compile(r"^\d{1,3}$")
_MAPPED_PREFIX = "::ffff:"


def is_valid_pattern(pattern: str) -> bool:
    """
    Check that a pattern is well formed.

    Example:
        is_valid_pattern("10.*.0.1")   # True
        is_valid_pattern("10.300")     # False
        is_valid_pattern("10..1")      # False
    """
    if not isinstance(pattern, str) or not pattern:
        return False
    segments = pattern.split(".")
    if len(segments) > 4:
        return False
    for segment in segments:
        if segment == "*":
            continue
        if not _OCTET.match(segment) or int(segment) > 255:
            return False
    return True


def _octets(address: str) -> List[str]:
    if address.lower().startswith(_MAPPED_PREFIX):
        address = address[len(_MAPPED_PREFIX):]
    parts = address.split(".")
    if len(parts) != 4 or not all(_OCTET.match(p) for p in parts):
        return []
    return parts


class IPAllowList:
    """
    Immutable set of allow patterns.

    The list is built once from configuration and only read afterwards,
    so worker threads share it without locking.
    """

    def __init__(self, patterns: Iterable[str] = ()):
        patterns = tuple(patterns)
        invalid = [p for p in patterns if not is_valid_pattern(p)]
        if invalid:
            raise ValueError(f"Invalid IP pattern(s): {', '.join(map(str, invalid))}")
        self._patterns: Tuple[Tuple[str, ...], ...] = tuple(
            tuple(p.split(".")) for p in patterns
        )

    @property
    def patterns(self) -> List[str]:
        return [".".join(p) for p in self._patterns]

    def __bool__(self) -> bool:
        return bool(self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)

    def permits(self, address: str) -> bool:
        """
        Check whether a client address is authorized.

        Args:
            address: The client IP as reported by the socket.

        Returns:
            True when the list is empty or any pattern matches.
        """
        if not self._patterns:
            return True

        octets = _octets(address or "")
        if not octets:
            return False

        for pattern in self._patterns:
            if all(
                segment == "*" or int(segment) == int(octet)
                for segment, octet in zip(pattern, octets)
            ):
                return True
        return False

    def __repr__(self) -> str:
        return f"IPAllowList({self.patterns!r})"
