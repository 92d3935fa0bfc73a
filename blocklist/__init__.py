"""
blocklist package - Host-list Aggregator

Modules:
    sources: Load the ordered list of source descriptors
    downloader: Fetch sources concurrently with optional ETag/Last-Modified caching
    cleaner: Normalize hosts/domain-list lines into bare domain tokens
    compiler: Insertion-order deduplication and atomic output writing
    pipeline: Main processing pipeline
"""

__version__ = "1.0.0"
