#!/usr/bin/env python3
"""
compiler.py - Blocklist Compiler with Insertion-Order Deduplication

This module is the merge step of the pipeline. It takes the domain streams
produced by the cleaner (one per source) and produces the final output file.

DESIGN GOALS:
    1. Union - every domain from every successful source is in the output
    2. Stable order - sources are folded in declared order, domains keep
       document order; the FIRST occurrence wins its position, later
       duplicates are dropped, never moved
    3. Atomic output - the previous file is replaced only once the new one is
       completely written; a failure leaves it untouched

OUTPUT FORMAT:
    UTF-8, one lowercase domain per line, every line terminated by "\\n",
    no header, no blank lines. The downstream DNS worker reads it as-is, so
    this format must stay stable.
"""

from __future__ import annotations

import os
import stat
import sys
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import tldextract

from blocklist.errors import WriteError

# Pre-configure tldextract for offline use (bundled suffix list, no updates check)
_tld_extract = tldextract.TLDExtract(suffix_list_urls=())


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class CompileStats:
    """Statistics from compilation."""
    sources: int = 0
    total_input: int = 0
    total_output: int = 0
    duplicate_pruned: int = 0
    registered_domains: int = 0


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

@lru_cache(maxsize=65536)
def get_registered_domain(domain: str) -> str | None:
    """
    Get registered domain (domain.tld) from full domain.

    Example: "a.b.example.co.uk" -> "example.co.uk"
    """
    ext = _tld_extract(domain)
    if ext.suffix and ext.domain:
        return f"{ext.domain}.{ext.suffix}"
    return None


def count_registered_domains(domains: Iterable[str]) -> int:
    """Number of distinct registered domains covered by the list."""
    return len({rd for rd in map(get_registered_domain, domains) if rd})


# ============================================================================
# MAIN COMPILATION
# ============================================================================

def compile_domains(streams: Iterable[Iterable[str]]) -> tuple[list[str], CompileStats]:
    """
    Fold per-source domain streams into one ordered, duplicate-free list.

    Comparison is case-insensitive; output entries are lowercase.
    """
    stats = CompileStats()
    seen: dict[str, None] = {}

    for stream in streams:
        stats.sources += 1
        for domain in stream:
            stats.total_input += 1
            key = domain.lower()
            if key in seen:
                stats.duplicate_pruned += 1
                continue
            seen[key] = None

    domains = list(seen)
    stats.total_output = len(domains)
    stats.registered_domains = count_registered_domains(domains)
    return domains, stats


def render(domains: Iterable[str]) -> str:
    return "".join(f"{domain}\n" for domain in domains)


def output_mode(output_path: Path) -> int:
    """Permissions for the new file: keep the existing file's, else umask default."""
    try:
        return stat.S_IMODE(output_path.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def write_blocklist(domains: list[str], output_file: str | Path) -> Path:
    """
    Atomically replace output_file with the given domains.

    The content goes to a temporary file in the same directory, is flushed to
    disk and then renamed over the target. The target keeps its permissions.

    Raises:
        WriteError: nothing to write, or the file could not be written
    """
    if not domains:
        raise WriteError("Refusing to write an empty blocklist")

    output_path = Path(output_file)
    temp_name = None
    replaced = False
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{output_path.name}.", suffix=".tmp", dir=output_path.parent
        )
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(render(domains))
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_name, output_mode(output_path))
        os.replace(temp_name, output_path)
        replaced = True
    except OSError as e:
        raise WriteError(f"Could not write {output_path}: {e}") from e
    finally:
        # Also runs on cancellation and KeyboardInterrupt
        if temp_name is not None and not replaced:
            try:
                os.unlink(temp_name)
            except FileNotFoundError:
                pass

    return output_path


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    if len(sys.argv) < 3:
        print("Usage: python -m blocklist.compiler <output_file> <input_file>...")
        sys.exit(1)

    from blocklist.cleaner import normalize_document

    output_file = sys.argv[1]
    streams = []
    for input_file in sys.argv[2:]:
        with open(input_file, encoding="utf-8-sig", errors="replace") as f:
            streams.append(normalize_document(f.read()))

    domains, stats = compile_domains(streams)
    try:
        write_blocklist(domains, output_file)
    except WriteError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"\nCompilation complete:")
    print(f"  Input:  {stats.total_input:,} domains from {stats.sources} files")
    print(f"  Output: {stats.total_output:,} domains ({stats.registered_domains:,} registered domains)")
    print(f"  Duplicates: {stats.duplicate_pruned:,}")
