"""
Chain Indexer - Block Event Ingestion Package

Fork-aware, idempotent indexing of blocks and transactions with counters
rollup, producer missed-slot tracking and account mention extraction.
"""

__version__ = "0.1.0"

__all__ = [
    "abi",
    "account_paths",
    "fork",
    "models",
    "pipeline",
    "schedule",
    "service",
    "source",
    "storables",
    "storage",
    "utils",
]
