"""
errors.py - Exception hierarchy for the blocklist pipeline.

    ConfigurationError  fatal, raised before any fetch
    FetchError          per source, the source contributes nothing
    FormatError         per line, the line is skipped
    WriteError          fatal, the previous output file is left untouched
    NoUsableSourcesError  no source produced a domain, the output is not written
"""
from __future__ import annotations


class BlocklistError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(BlocklistError):
    """Sources file missing, unreadable, malformed or empty."""


class FetchError(BlocklistError):
    """A single source could not be retrieved."""

    def __init__(self, url: str, cause: str | BaseException):
        self.url = url
        self.cause = cause
        super().__init__(f"{url}: {cause}")


class FormatError(BlocklistError):
    """A line did not yield a usable domain token."""

    def __init__(self, line: str, reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f"{reason}: {line!r}")


class WriteError(BlocklistError):
    """The output file could not be replaced."""


class NoUsableSourcesError(BlocklistError):
    """Every source failed, or the successful ones held no domains."""
