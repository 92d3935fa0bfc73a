#!/usr/bin/env python3
"""
downloader.py - Async Blocklist Downloader

Fetches every configured source concurrently and returns the document text.
A failed source yields a FetchError and an empty contribution; it never
cancels the other downloads.

Optional ETag/Last-Modified caching: when a cache directory is given, a
304 Not Modified reuses the body stored by the previous run. The cache is
NOT a fallback for failed downloads.

Usage:
    python -m blocklist.downloader --sources sources.txt [--cache .cache]
"""
from __future__ import annotations

import argparse
import asyncio
import hashlib
import json
import sys
import time
from pathlib import Path
from typing import NamedTuple
from urllib.parse import urlparse

import aiofiles
import aiofiles.os
import aiohttp

from blocklist.errors import ConfigurationError, FetchError
from blocklist.sources import SourceDescriptor, load_sources


# Default configuration
DEFAULT_TIMEOUT = 30
DEFAULT_RETRIES = 3
DEFAULT_CONCURRENCY = 8
DEFAULT_MAX_BYTES = 64 * 1024 * 1024

CHUNK_SIZE = 64 * 1024

# State file for ETag/Last-Modified tracking
STATE_FILE = "state.json"


class FetchResult(NamedTuple):
    """Result of a single fetch operation."""
    source: SourceDescriptor
    text: str | None
    changed: bool = True
    error: FetchError | None = None

    @property
    def success(self) -> bool:
        return self.error is None


class _Retryable(Exception):
    """Internal marker for failures worth another attempt."""


def url_to_filename(url: str) -> str:
    """Generate a safe, unique filename from a URL."""
    # Use SHA256 hash for uniqueness, take first 16 chars
    url_hash = hashlib.sha256(url.encode()).hexdigest()[:16]
    # Extract domain for readability
    domain = urlparse(url).netloc.replace(".", "_").replace(":", "_")[:30] or "unknown"
    return f"{domain}_{url_hash}.txt"


def decode_body(content: bytes) -> str:
    return content.decode("utf-8-sig", errors="replace")


def load_state(cache_dir: Path) -> dict:
    """Load state.json containing ETag/Last-Modified cache."""
    state_path = cache_dir / STATE_FILE
    if state_path.exists():
        try:
            with open(state_path, encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            print(f"Warning: Could not load state.json: {e}", file=sys.stderr)
    return {}


def save_state(cache_dir: Path, state: dict) -> None:
    """Save state.json atomically."""
    state_path = cache_dir / STATE_FILE
    temp_path = state_path.with_suffix(".tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2, sort_keys=True)
        temp_path.replace(state_path)
    except OSError as e:
        print(f"Warning: Could not save state.json: {e}", file=sys.stderr)


async def store_cached(cache_path: Path, content: bytes) -> bool:
    """Write a body to the cache atomically. Returns False (with a warning) on failure."""
    temp_path = cache_path.with_suffix(".tmp")
    try:
        async with aiofiles.open(temp_path, "wb") as f:
            await f.write(content)
        await aiofiles.os.replace(temp_path, cache_path)
    except OSError as e:
        print(f"Warning: Could not cache {cache_path.name}: {e}", file=sys.stderr)
        try:
            temp_path.unlink()
        except OSError:
            pass
        return False
    return True


def prune_state(cache_dir: Path, state: dict, urls: set[str]) -> None:
    """Forget sources no longer configured and delete their cached bodies."""
    for url in [u for u in state if u not in urls]:
        del state[url]
        try:
            (cache_dir / url_to_filename(url)).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            print(f"Warning: Could not remove cached copy of {url}: {e}", file=sys.stderr)


async def read_limited(response: aiohttp.ClientResponse, url: str, max_bytes: int) -> bytes:
    """Read the whole body, refusing anything larger than max_bytes."""
    declared = response.headers.get("Content-Length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise FetchError(url, f"response too large ({declared} bytes > {max_bytes})")

    chunks = []
    size = 0
    async for chunk in response.content.iter_chunked(CHUNK_SIZE):
        size += len(chunk)
        if size > max_bytes:
            raise FetchError(url, f"response too large (> {max_bytes} bytes)")
        chunks.append(chunk)
    return b"".join(chunks)


async def fetch_url(
    session: aiohttp.ClientSession,
    source: SourceDescriptor,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    max_bytes: int = DEFAULT_MAX_BYTES,
    cache_dir: Path | None = None,
    state: dict | None = None,
) -> FetchResult:
    """
    Fetch a single source.

    Network errors, timeouts, 429 and 5xx responses are retried with
    exponential backoff. Other 4xx responses and oversized bodies fail
    immediately.

    Returns:
        FetchResult with the decoded document text

    Raises:
        FetchError: the source could not be retrieved
    """
    url = source.url
    filename = url_to_filename(url)
    cache_path = cache_dir / filename if cache_dir else None
    if state is None:
        state = {}

    # Get cached headers
    headers = {}
    if cache_path is not None and cache_path.is_file():
        url_state = state.get(url, {})
        if url_state.get("etag"):
            headers["If-None-Match"] = url_state["etag"]
        if url_state.get("last_modified"):
            headers["If-Modified-Since"] = url_state["last_modified"]

    attempts = max(retries, 1)
    last_error: str | BaseException = "Max retries exceeded"

    for attempt in range(attempts):
        if attempt:
            await asyncio.sleep(2 ** (attempt - 1))  # Exponential backoff
        try:
            async with session.get(
                url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
                allow_redirects=True,
            ) as response:

                # 304 Not Modified - use cached version
                if response.status == 304:
                    if cache_path is not None and cache_path.is_file():
                        async with aiofiles.open(cache_path, "rb") as src:
                            content = await src.read()
                        return FetchResult(source, decode_body(content), changed=False)
                    # Cache file missing, need to re-download
                    headers = {}
                    raise _Retryable("HTTP 304 without cached copy")

                if response.status == 429 or response.status >= 500:
                    raise _Retryable(f"HTTP {response.status}")
                if not 200 <= response.status < 300:
                    raise FetchError(url, f"HTTP {response.status}")

                content = await read_limited(response, url, max_bytes)

                if cache_path is not None:
                    if await store_cached(cache_path, content):
                        # Update state with new ETag/Last-Modified
                        new_state = {}
                        if "ETag" in response.headers:
                            new_state["etag"] = response.headers["ETag"]
                        if "Last-Modified" in response.headers:
                            new_state["last_modified"] = response.headers["Last-Modified"]
                        new_state["filename"] = filename
                        new_state["fetched_at"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
                        state[url] = new_state
                    else:
                        # Never pair a validator with a body we failed to store
                        state.pop(url, None)

                return FetchResult(source, decode_body(content), changed=True)

        except FetchError:
            raise
        except _Retryable as e:
            last_error = str(e)
        except asyncio.TimeoutError:
            last_error = f"Timeout after {timeout}s"
        except aiohttp.ClientError as e:
            last_error = e

    raise FetchError(url, last_error)


async def fetch_all(
    sources: list[SourceDescriptor],
    concurrency: int = DEFAULT_CONCURRENCY,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    max_bytes: int = DEFAULT_MAX_BYTES,
    cache_dir: Path | None = None,
    session: aiohttp.ClientSession | None = None,
) -> list[FetchResult]:
    """
    Fetch all sources concurrently with rate limiting.

    Waits for every download to finish (successfully or not) and returns one
    FetchResult per source, in the order the sources were given.
    """
    state: dict = {}
    if cache_dir is not None:
        cache_dir.mkdir(parents=True, exist_ok=True)
        state = load_state(cache_dir)

    # Create semaphore for concurrency control
    semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def fetch_with_semaphore(client: aiohttp.ClientSession, source: SourceDescriptor) -> FetchResult:
        async with semaphore:
            return await fetch_url(
                client, source, timeout, retries, max_bytes, cache_dir, state
            )

    async def run(client: aiohttp.ClientSession) -> list:
        tasks = [fetch_with_semaphore(client, source) for source in sources]
        return await asyncio.gather(*tasks, return_exceptions=True)

    if session is not None:
        results = await run(session)
    else:
        # Create session with connection pooling
        connector = aiohttp.TCPConnector(limit=max(concurrency, 1), limit_per_host=2)
        async with aiohttp.ClientSession(connector=connector) as client:
            results = await run(client)

    # Handle exceptions in results
    final_results = []
    for source, result in zip(sources, results):
        if isinstance(result, FetchError):
            final_results.append(FetchResult(source, None, changed=False, error=result))
        elif isinstance(result, Exception):
            final_results.append(FetchResult(source, None, changed=False, error=FetchError(source.url, result)))
        elif isinstance(result, BaseException):
            # Cancellation and interpreter exits propagate
            raise result
        else:
            final_results.append(result)

    if cache_dir is not None:
        prune_state(cache_dir, state, {source.url for source in sources})
        save_state(cache_dir, state)

    return final_results


def main() -> int:
    """Fetch every source and report sizes, without building a blocklist."""
    parser = argparse.ArgumentParser(description="Fetch blocklist sources")
    parser.add_argument("--sources", required=True, help="Path to sources file (.txt or .json)")
    parser.add_argument("--cache", help="Cache directory for ETag state")
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY, help="Max concurrent downloads")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="Request timeout in seconds")
    parser.add_argument("--retries", type=int, default=DEFAULT_RETRIES, help="Attempts per URL")
    parser.add_argument("--max-bytes", type=int, default=DEFAULT_MAX_BYTES, help="Maximum response size")

    args = parser.parse_args()

    try:
        sources = load_sources(args.sources)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    print(f"🔄 Fetching {len(sources)} sources...")

    results = asyncio.run(fetch_all(
        sources,
        args.concurrency,
        args.timeout,
        args.retries,
        args.max_bytes,
        Path(args.cache) if args.cache else None,
    ))

    for r in results:
        if r.success:
            print(f"   {r.source.url}: {len(r.text or ''):,} chars{'' if r.changed else ' (not modified)'}")

    failed = [r for r in results if not r.success]
    print(f"✅ Fetched: {len(results) - len(failed)}/{len(results)}")
    if failed:
        print(f"⚠️  Failed: {len(failed)}", file=sys.stderr)
        for r in failed:
            print(f"   - {r.error}", file=sys.stderr)

    return 1 if len(failed) == len(results) else 0


if __name__ == "__main__":
    sys.exit(main())
