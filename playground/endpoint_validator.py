"""
Endpoint Validator

SSRF protection for every outbound URL the proxy fetches on behalf of a
caller (token endpoints, OIDC discovery documents, JWKS URIs).

Checks, in order:
- URL parses and has a hostname
- HTTPS scheme (localhost / 127.0.0.1 exempt for development)
- Port is empty or on the allow-list
- Literal IPs are checked against the blocked-range table
- Hostnames are resolved and EVERY returned address is checked, so a name
  that resolves to one public and one internal address is rejected
"""

import asyncio
import ipaddress
import socket
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional
from urllib.parse import urlparse

from observability.logging_config import get_logger
from observability.metrics import metrics
from playground.config import get_playground_config

logger = get_logger(__name__)

LOCAL_DEV_HOSTS = ("localhost", "127.0.0.1")

REASON_MALFORMED = "malformed URL"
REASON_NOT_HTTPS = "not HTTPS"
REASON_DISALLOWED_PORT = "disallowed port"
REASON_UNRESOLVABLE = "unresolvable hostname"

Resolver = Callable[[str], Awaitable[List[str]]]


# -----------------------------------------------------------------------------
# Blocked ranges
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class BlockedRange:
    """A prefix-matched address block with an optional refinement."""

    prefix: str
    description: str
    refine: Optional[Callable[[str], bool]] = None

    def matches(self, ip: str) -> bool:
        if not ip.startswith(self.prefix):
            return False
        return self.refine is None or self.refine(ip)


def _second_octet_in(low: int, high: int) -> Callable[[str], bool]:
    def check(ip: str) -> bool:
        parts = ip.split(".")
        try:
            second = int(parts[1])
        except (IndexError, ValueError):
            return False
        return low <= second <= high

    return check


def _exactly(address: str) -> Callable[[str], bool]:
    return lambda ip: ip == address


MAPPED_PREFIX = "::ffff:"

# Evaluated top to bottom, first match wins.
BLOCKED_RANGES = (
    BlockedRange("127.", "loopback"),
    BlockedRange("::1", "IPv6 loopback", _exactly("::1")),
    BlockedRange("::ffff:127.", "IPv6-mapped loopback"),
    BlockedRange("10.", "private (10.x)"),
    BlockedRange("192.168.", "private (192.168.x)"),
    BlockedRange("172.", "private (172.16-31.x)", _second_octet_in(16, 31)),
    BlockedRange("169.254.", "link-local / cloud metadata"),
    BlockedRange("fc", "IPv6 unique local"),
    BlockedRange("fd", "IPv6 unique local"),
    BlockedRange("fe80:", "IPv6 link-local"),
    BlockedRange("100.100.100.200", "cloud metadata", _exactly("100.100.100.200")),
    BlockedRange("0.0.0.0", "unspecified address", _exactly("0.0.0.0")),
    BlockedRange("::", "unspecified address", _exactly("::")),
)


def normalize_ip(ip: str) -> str:
    """
    Canonical lowercase text form of an address.

    IPv6 addresses are compressed and IPv4-mapped addresses are rendered with
    a dotted-quad tail so the mapped-loopback prefix matches.
    """
    raw = ip.strip().lower()
    if raw.startswith("[") and raw.endswith("]"):
        raw = raw[1:-1]
    try:
        parsed = ipaddress.ip_address(raw.split("%", 1)[0])
    except ValueError:
        return raw

    if isinstance(parsed, ipaddress.IPv6Address) and parsed.ipv4_mapped is not None:
        return f"::ffff:{parsed.ipv4_mapped}"
    return parsed.compressed


def classify_ip(ip: str, ranges: Iterable[BlockedRange] = BLOCKED_RANGES) -> Optional[str]:
    """
    Return the description of the first blocked range containing ip, or None.

    An IPv4-mapped IPv6 address is also checked through its embedded IPv4
    address, since dual-stack sockets route it to that host.
    """
    ranges = tuple(ranges)
    normalized = normalize_ip(ip)
    for blocked in ranges:
        if blocked.matches(normalized):
            return blocked.description

    if normalized.startswith(MAPPED_PREFIX):
        embedded = normalized[len(MAPPED_PREFIX):]
        if is_ip_literal(embedded):
            return classify_ip(embedded, ranges)
    return None


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        return False
    return True


# -----------------------------------------------------------------------------
# Verdict
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationVerdict:
    """Result of validating an outbound URL."""

    valid: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationVerdict":
        return cls(valid=True)

    @classmethod
    def blocked(cls, reason: str) -> "ValidationVerdict":
        return cls(valid=False, reason=reason)


async def resolve_hostname(hostname: str) -> List[str]:
    """Resolve hostname to all of its A/AAAA addresses without blocking the loop."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    return list(dict.fromkeys(info[4][0] for info in infos))


# -----------------------------------------------------------------------------
# Validator
# -----------------------------------------------------------------------------


class EndpointValidator:
    """
    Classifies candidate outbound URLs as safe or blocked.

    Must be consulted before any fetch driven by caller-supplied URLs.
    The resolver is injectable so tests never touch real DNS.
    """

    def __init__(
        self,
        allowed_ports: Optional[Iterable[int]] = None,
        resolver: Optional[Resolver] = None,
        blocked_ranges: Iterable[BlockedRange] = BLOCKED_RANGES,
    ):
        config = get_playground_config()
        ports = allowed_ports if allowed_ports is not None else config.allowed_ports
        self.allowed_ports = frozenset(int(p) for p in ports)
        self.resolver = resolver or resolve_hostname
        self.blocked_ranges = tuple(blocked_ranges)

    async def validate(self, url: str) -> ValidationVerdict:
        """
        Validate an outbound URL.

        Args:
            url: Candidate URL

        Returns:
            ValidationVerdict, with the blocking reason when invalid
        """
        verdict = await self._validate(url)
        metrics.record_endpoint_validation(verdict.valid, verdict.reason)
        if not verdict.valid:
            logger.warning("endpoint_blocked", url=url, reason=verdict.reason)
        return verdict

    async def _validate(self, url: str) -> ValidationVerdict:
        try:
            parsed = urlparse(url)
            hostname = parsed.hostname
            port = parsed.port
        except (ValueError, AttributeError, TypeError):
            return ValidationVerdict.blocked(REASON_MALFORMED)

        if not parsed.scheme or not hostname:
            return ValidationVerdict.blocked(REASON_MALFORMED)

        is_local_dev = hostname in LOCAL_DEV_HOSTS

        if parsed.scheme.lower() != "https" and not is_local_dev:
            return ValidationVerdict.blocked(REASON_NOT_HTTPS)

        if port is not None and port not in self.allowed_ports:
            return ValidationVerdict.blocked(REASON_DISALLOWED_PORT)

        if is_local_dev:
            return ValidationVerdict.ok()

        if is_ip_literal(hostname):
            blocked = classify_ip(hostname, self.blocked_ranges)
            return ValidationVerdict.blocked(blocked) if blocked else ValidationVerdict.ok()

        try:
            addresses = await self.resolver(hostname)
        except (OSError, UnicodeError) as e:
            logger.info("endpoint_resolution_failed", hostname=hostname, error=str(e))
            return ValidationVerdict.blocked(REASON_UNRESOLVABLE)

        if not addresses:
            return ValidationVerdict.blocked(REASON_UNRESOLVABLE)

        for address in addresses:
            blocked = classify_ip(address, self.blocked_ranges)
            if blocked:
                logger.warning(
                    "endpoint_resolves_to_blocked_address",
                    hostname=hostname,
                    address=address,
                    range=blocked,
                )
                return ValidationVerdict.blocked(blocked)

        return ValidationVerdict.ok()
