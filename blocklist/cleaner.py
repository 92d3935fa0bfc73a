#!/usr/bin/env python3
"""
cleaner.py - Line Normalization for Hosts Files and Domain Lists

This module turns one raw blocklist document into a stream of bare domain names.
It's the first stage of the pipeline, running BEFORE the compiler.

Supported Dialects:
    Remote lists come in a handful of historical layouts:

        0.0.0.0 ads.example.com               (hosts, null route)
        127.0.0.1	ads.example.com # tracker  (hosts, loopback, tab separated)
        ::1 ads.example.com                   (any IP, generic tabular)
        ads.example.com                       (plain domain list)

    All of them reduce to the same token: ads.example.com

Per-line Rules:
    1. Strip leading whitespace
    2. Discard empty lines and # comment lines
    3. Tabs become single spaces, runs of spaces collapse to one
    4. The literal prefixes "0.0.0.0 " and "127.0.0.1 " are removed whatever
       the declared format is
    5. Two-column formats skip a leading IP field, then the first field is the
       domain; anything after it (inline comments, extra aliases) is dropped
    6. The domain is lowercased and must look like a DNS name

Design Decision - Skip, Don't Fail:
    Lists are maintained by third parties and are noisy. A line that does not
    yield a domain raises FormatError inside clean_line(); iter_domains()
    counts it and moves on. One bad line never aborts the document.
"""

import ipaddress
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Final, NamedTuple

from blocklist.errors import FormatError
from blocklist.sources import SourceFormat


# =============================================================================
# CONSTANTS
# =============================================================================

#: Hosts-file prefixes stripped regardless of declared format (case-sensitive,
#: exactly one trailing space)
ZERO_PREFIX: Final[str] = "0.0.0.0 "
LOOPBACK_PREFIX: Final[str] = "127.0.0.1 "

#: Number of meaningful lines inspected when sniffing a document's format
SNIFF_LINES: Final[int] = 200

#: Local hostnames found at the top of most hosts files
LOCAL_HOSTNAMES: Final[frozenset[str]] = frozenset({
    "localhost", "localhost.localdomain", "local", "broadcasthost",
    "ip6-localhost", "ip6-loopback", "ip6-localnet",
    "ip6-mcastprefix", "ip6-allnodes", "ip6-allrouters", "ip6-allhosts",
})


# =============================================================================
# REGEX PATTERNS
# =============================================================================

#: Runs of two or more spaces
SPACE_RUN_PATTERN: Final[re.Pattern[str]] = re.compile(r" {2,}")

#: Dot-separated non-empty labels. Underscores are tolerated since real lists
#: carry them (e.g. _dmarc.example.com)
DOMAIN_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-z0-9_-]+(?:\.[a-z0-9_-]+)*$")


# =============================================================================
# DATA STRUCTURES
# =============================================================================

class CleanResult(NamedTuple):
    """
    Result of cleaning a single line.

    Attributes:
        domain: Extracted domain token, or None if discarded
        discarded: True if line was discarded
        reason: Reason for discard (for stats), or None if kept

    Example:
        >>> CleanResult("ads.example.com", False, None).discarded
        False
    """
    domain: str | None
    discarded: bool
    reason: str | None


@dataclass
class CleanStats:
    """Per-document line counters."""
    total_lines: int = 0
    kept_lines: int = 0
    comments_removed: int = 0
    empty_removed: int = 0
    invalid_removed: int = 0
    local_removed: int = 0


# =============================================================================
# HELPERS
# =============================================================================

def is_ip_address(value: str) -> bool:
    """
    Check whether a field is an IPv4 or IPv6 address.

    Example:
        >>> is_ip_address("0.0.0.0")
        True
        >>> is_ip_address("::1")
        True
        >>> is_ip_address("ads.example.com")
        False
    """
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def squeeze(line: str) -> str:
    """Strip the line and reduce tabs and space runs to single spaces."""
    line = line.strip().replace("\t", " ")
    return SPACE_RUN_PATTERN.sub(" ", line)


def strip_known_prefix(line: str) -> str:
    """
    Remove a leading "0.0.0.0 " or "127.0.0.1 ".

    Example:
        >>> strip_known_prefix("0.0.0.0 ads.example.com")
        'ads.example.com'
        >>> strip_known_prefix("10.0.0.1 ads.example.com")
        '10.0.0.1 ads.example.com'
    """
    for prefix in (ZERO_PREFIX, LOOPBACK_PREFIX):
        if line.startswith(prefix):
            return line[len(prefix):]
    return line


def normalize_domain(field: str) -> str:
    """Normalize domain to lowercase, stripped, without the root dot."""
    return field.strip().lower().rstrip(".")


# =============================================================================
# CLEANING FUNCTIONS
# =============================================================================

def clean_line(
    line: str,
    fmt: SourceFormat = SourceFormat.RAW,
    drop_local: bool = False,
) -> CleanResult:
    """
    Extract the domain token from one raw line.

    Args:
        line: The raw line (with or without line terminator)
        fmt: Declared (already resolved) format of the document
        drop_local: Discard local hostnames such as "localhost"

    Returns:
        CleanResult with the domain, or discarded with reason
        "empty", "comment" or "local"

    Raises:
        FormatError: the line has content but no usable domain

    Example:
        >>> clean_line("127.0.0.1\\tads.example.com # tracker", SourceFormat.HOSTS_LOOPBACK).domain
        'ads.example.com'
        >>> clean_line("# comment").reason
        'comment'
    """
    stripped = line.lstrip()

    if not stripped.strip():
        return CleanResult(None, True, "empty")
    if stripped.startswith("#"):
        return CleanResult(None, True, "comment")

    rest = strip_known_prefix(squeeze(stripped))
    fields = rest.split(" ")

    field = fields[0]
    if fmt.two_column and len(fields) > 1 and is_ip_address(field):
        field = fields[1]

    domain = normalize_domain(field)
    if not domain:
        raise FormatError(line, "empty field")
    if is_ip_address(domain):
        raise FormatError(line, "no domain after address")
    if not DOMAIN_PATTERN.match(domain):
        raise FormatError(line, "not a domain name")

    if drop_local and domain in LOCAL_HOSTNAMES:
        return CleanResult(None, True, "local")

    return CleanResult(domain, False, None)


def detect_format(lines: Iterable[str]) -> SourceFormat:
    """
    Guess the layout of a document from its first meaningful lines.

    Mostly IP-led lines make it a hosts file; which flavour depends on the
    dominant address. Anything else is treated as a plain domain list.

    Example:
        >>> detect_format(["# hosts", "0.0.0.0 a.com", "0.0.0.0 b.com"])
        <SourceFormat.HOSTS_ZERO: 'hosts-zero'>
        >>> detect_format(["a.com", "b.com"])
        <SourceFormat.RAW: 'raw'>
    """
    sampled = zero = loopback = ip_led = 0

    for line in lines:
        line = squeeze(line)
        if not line or line.startswith("#"):
            continue
        sampled += 1
        first = line.split(" ", 1)[0]
        if line.startswith(ZERO_PREFIX):
            zero += 1
        elif line.startswith(LOOPBACK_PREFIX):
            loopback += 1
        if " " in line and is_ip_address(first):
            ip_led += 1
        if sampled >= SNIFF_LINES:
            break

    if ip_led * 2 <= sampled:
        return SourceFormat.RAW
    if zero * 2 > ip_led:
        return SourceFormat.HOSTS_ZERO
    if loopback * 2 > ip_led:
        return SourceFormat.HOSTS_LOOPBACK
    return SourceFormat.TABULAR


def iter_domains(
    lines: Iterable[str],
    fmt: SourceFormat = SourceFormat.RAW,
    stats: CleanStats | None = None,
    drop_local: bool = False,
) -> Iterator[str]:
    """
    Lazily yield domain tokens in document order.

    Duplicates within the document are yielded as-is; deduplication is the
    compiler's job. Malformed lines are counted in stats and skipped.

    Args:
        lines: Raw lines of one document
        fmt: Resolved format (AUTO is treated as RAW; use normalize_document to sniff)
        stats: Optional CleanStats updated while iterating
        drop_local: Discard local hostnames

    Example:
        >>> list(iter_domains(["0.0.0.0 a.com", "", "# x", "A.com"]))
        ['a.com', 'a.com']
    """
    if stats is None:
        stats = CleanStats()

    for line in lines:
        stats.total_lines += 1
        try:
            result = clean_line(line, fmt, drop_local)
        except FormatError:
            stats.invalid_removed += 1
            continue

        if result.discarded:
            if result.reason == "comment":
                stats.comments_removed += 1
            elif result.reason == "empty":
                stats.empty_removed += 1
            elif result.reason == "local":
                stats.local_removed += 1
            continue

        stats.kept_lines += 1
        yield result.domain  # type: ignore[misc]


def normalize_document(
    text: str,
    fmt: SourceFormat = SourceFormat.AUTO,
    stats: CleanStats | None = None,
    drop_local: bool = False,
) -> Iterator[str]:
    """Resolve AUTO by sniffing, then stream the document's domains."""
    lines = text.splitlines()
    if fmt is SourceFormat.AUTO:
        fmt = detect_format(lines)
    return iter_domains(lines, fmt, stats, drop_local)
