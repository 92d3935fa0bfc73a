"""
sources.py - Source registry

Loads the ordered list of blocklist sources from a configuration file.

Plain text (sources.txt):
    # comment
    https://example.org/hosts            hosts-zero
    https://example.org/domains.txt      raw
    https://example.org/other.txt                   <- format defaults to auto

JSON (sources.json):
    ["https://example.org/hosts", {"url": "https://...", "format": "raw"}]
    or {"sources": [...]}
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

from blocklist.errors import ConfigurationError


class SourceFormat(str, Enum):
    """Declared layout of a remote list."""
    RAW = "raw"                        # one domain per line
    HOSTS_ZERO = "hosts-zero"          # 0.0.0.0 domain
    HOSTS_LOOPBACK = "hosts-loopback"  # 127.0.0.1 domain
    TABULAR = "tabular"                # any IP, tab/space separated
    AUTO = "auto"                      # sniff from content

    @property
    def two_column(self) -> bool:
        return self in (SourceFormat.HOSTS_ZERO, SourceFormat.HOSTS_LOOPBACK, SourceFormat.TABULAR)


@dataclass(frozen=True)
class SourceDescriptor:
    """One remote list to fetch."""
    url: str
    format: SourceFormat = SourceFormat.AUTO


def parse_format(value: str | None) -> SourceFormat:
    if value is None or value == "":
        return SourceFormat.AUTO
    if not isinstance(value, str):
        raise ConfigurationError(f"Source format must be a string, got {value!r}")
    try:
        return SourceFormat(value.strip().lower())
    except ValueError:
        choices = ", ".join(f.value for f in SourceFormat)
        raise ConfigurationError(f"Unknown source format {value!r} (expected one of: {choices})") from None


def make_source(url: str, fmt: str | None = None) -> SourceDescriptor:
    """Validate a URL and format hint and build a descriptor."""
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"Not an http(s) URL: {url!r}")
    return SourceDescriptor(url=url, format=parse_format(fmt))


def _parse_text(text: str) -> list[SourceDescriptor]:
    sources = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        # Skip empty lines and comments
        if not line or line.startswith("#"):
            continue
        parts = line.split()
        if len(parts) > 2:
            raise ConfigurationError(f"Line {lineno}: expected 'URL [format]', got {line!r}")
        sources.append(make_source(*parts))
    return sources


def _parse_json(text: str) -> list[SourceDescriptor]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Malformed JSON: {e}") from e

    if isinstance(data, dict):
        data = data.get("sources")
    if not isinstance(data, list):
        raise ConfigurationError("JSON sources must be a list (or an object with a 'sources' list)")

    sources = []
    for entry in data:
        if isinstance(entry, str):
            sources.append(make_source(entry))
        elif isinstance(entry, dict) and isinstance(entry.get("url"), str):
            sources.append(make_source(entry["url"], entry.get("format")))
        else:
            raise ConfigurationError(f"Invalid source entry: {entry!r}")
    return sources


def load_sources(sources_file: str | Path) -> list[SourceDescriptor]:
    """
    Load source descriptors in declared order.

    Duplicate URLs are kept once, at their first position.

    Raises:
        ConfigurationError: file missing/unreadable/malformed, or no sources declared
    """
    path = Path(sources_file)
    try:
        text = path.read_text(encoding="utf-8-sig")
    except FileNotFoundError:
        raise ConfigurationError(f"Sources file not found: {path}") from None
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Could not read sources file {path}: {e}") from e

    if path.suffix.lower() == ".json":
        sources = _parse_json(text)
    else:
        sources = _parse_text(text)

    unique: dict[str, SourceDescriptor] = {}
    for source in sources:
        unique.setdefault(source.url, source)

    if not unique:
        raise ConfigurationError(f"No sources declared in {path}")
    return list(unique.values())
