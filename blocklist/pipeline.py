#!/usr/bin/env python3
"""
pipeline.py

Main processing pipeline for blocklist compilation.

Usage:
    python -m blocklist.pipeline --sources sources.txt --output blocklist.txt

Pipeline stages:
1. Load source descriptors
2. Fetch all sources concurrently
3. Normalize each document into domain tokens
4. Compile (union, deduplicate) and atomically write the output

Exit codes:
    0  at least one source succeeded and the output was written
    1  every source failed, nothing usable was produced, or the write failed
    2  configuration error
"""
from __future__ import annotations

import argparse
import asyncio
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path

import aiohttp

from blocklist.cleaner import CleanStats, normalize_document
from blocklist.compiler import CompileStats, compile_domains, write_blocklist
from blocklist.downloader import (
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_BYTES,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    FetchResult,
    fetch_all,
)
from blocklist.errors import ConfigurationError, NoUsableSourcesError, WriteError
from blocklist.sources import SourceDescriptor, load_sources

DEFAULT_OUTPUT = "blocklist.txt"


@dataclass
class PipelineReport:
    """Everything main() needs to print a summary."""
    results: list[FetchResult]
    clean_stats: dict[str, CleanStats] = field(default_factory=dict)
    compile_stats: CompileStats | None = None
    output: Path | None = None

    @property
    def failed(self) -> list[FetchResult]:
        return [r for r in self.results if not r.success]

    @property
    def succeeded(self) -> list[FetchResult]:
        return [r for r in self.results if r.success]


async def run_pipeline(
    sources: list[SourceDescriptor],
    output_file: str | Path,
    concurrency: int = DEFAULT_CONCURRENCY,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    max_bytes: int = DEFAULT_MAX_BYTES,
    cache_dir: Path | None = None,
    drop_local: bool = False,
    session: aiohttp.ClientSession | None = None,
) -> PipelineReport:
    """
    Run the full pipeline.

    Returns:
        PipelineReport with per-source results and statistics

    Raises:
        NoUsableSourcesError: no source produced any domain (output untouched)
        WriteError: the output could not be replaced (output untouched)
    """
    # =========================================================================
    # Stage 1: Fetch
    # =========================================================================
    print(f"🔄 Stage 1: Fetching {len(sources)} sources...")
    stage1_start = time.time()

    results = await fetch_all(
        sources,
        concurrency=concurrency,
        timeout=timeout,
        retries=retries,
        max_bytes=max_bytes,
        cache_dir=cache_dir,
        session=session,
    )
    report = PipelineReport(results=results)

    print(f"   Fetched {len(report.succeeded)}/{len(results)} sources ({time.time() - stage1_start:.1f}s)")
    for r in report.failed:
        print(f"⚠️  Source failed: {r.error}", file=sys.stderr)

    if not report.succeeded:
        raise NoUsableSourcesError("All sources failed")

    # =========================================================================
    # Stage 2: Normalize and compile
    # =========================================================================
    print("\n⚙️  Stage 2: Normalizing and deduplicating...")
    stage2_start = time.time()

    streams = []
    for r in report.succeeded:
        stats = CleanStats()
        report.clean_stats[r.source.url] = stats
        streams.append(normalize_document(r.text or "", r.source.format, stats, drop_local))

    domains, report.compile_stats = compile_domains(streams)
    print(f"   {len(domains):,} unique domains ({time.time() - stage2_start:.1f}s)")

    if not domains:
        raise NoUsableSourcesError("Sources were fetched but contained no domains")

    # =========================================================================
    # Stage 3: Write
    # =========================================================================
    report.output = write_blocklist(domains, output_file)
    return report


def print_summary(report: PipelineReport) -> None:
    """Print formatted summary."""
    print("\n" + "=" * 60)
    print("📊 PIPELINE SUMMARY")
    print("=" * 60)

    print(f"\n📁 Sources: {len(report.succeeded)} ok, {len(report.failed)} failed")

    for url, stats in report.clean_stats.items():
        print(f"\n   {url}")
        print(f"      Lines:    {stats.total_lines:>10,}")
        print(f"      Kept:     {stats.kept_lines:>10,}")
        print(f"      Comments: {stats.comments_removed:>10,}")
        print(f"      Empty:    {stats.empty_removed:>10,}")
        print(f"      Invalid:  {stats.invalid_removed:>10,}")
        if stats.local_removed:
            print(f"      Local:    {stats.local_removed:>10,}")

    stats = report.compile_stats
    if stats is not None:
        print(f"\n📦 Output:")
        print(f"   Input domains:      {stats.total_input:>12,}")
        print(f"   Duplicates:         {stats.duplicate_pruned:>12,}")
        print(f"   Unique domains:     {stats.total_output:>12,}")
        print(f"   Registered domains: {stats.registered_domains:>12,}")

    if report.output is not None:
        print(f"\n💾 Written to {report.output}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Merge remote hosts files and domain lists into one blocklist")
    parser.add_argument("--sources", required=True, help="Path to sources file (.txt or .json)")
    parser.add_argument("--output", default=DEFAULT_OUTPUT, help=f"Output file (default: {DEFAULT_OUTPUT})")
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY, help="Max concurrent downloads")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="Request timeout in seconds")
    parser.add_argument("--retries", type=int, default=DEFAULT_RETRIES, help="Attempts per URL")
    parser.add_argument("--max-bytes", type=int, default=DEFAULT_MAX_BYTES, help="Maximum response size in bytes")
    parser.add_argument("--cache", help="Cache directory for ETag/Last-Modified state")
    parser.add_argument("--drop-local", action="store_true", help="Drop localhost and similar local hostnames")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        sources = load_sources(args.sources)
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return 2

    print("🚀 Starting blocklist pipeline...")
    print("-" * 60)
    start_time = time.time()

    try:
        report = asyncio.run(run_pipeline(
            sources,
            args.output,
            concurrency=args.concurrency,
            timeout=args.timeout,
            retries=args.retries,
            max_bytes=args.max_bytes,
            cache_dir=Path(args.cache) if args.cache else None,
            drop_local=args.drop_local,
        ))
    except (NoUsableSourcesError, WriteError) as e:
        print(f"\n❌ ERROR: {e}; {args.output} left unchanged", file=sys.stderr)
        return 1

    print_summary(report)
    print(f"\n⏱️  Total time: {time.time() - start_time:.1f}s")
    if report.failed:
        print(f"⚠️  Completed with {len(report.failed)} failed source(s):", file=sys.stderr)
        for r in report.failed:
            print(f"   - {r.error}", file=sys.stderr)
    else:
        print("✅ Pipeline completed successfully!")

    return 0


if __name__ == "__main__":
    sys.exit(main())
