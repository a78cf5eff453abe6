"""Downstream document store clients."""

from alertsynth.store.base import DocumentStore, ItemError, WriteResult
from alertsynth.store.elasticsearch import ElasticsearchStore, analyze_bulk_response

__all__ = [
    "DocumentStore",
    "ElasticsearchStore",
    "ItemError",
    "WriteResult",
    "analyze_bulk_response",
]
