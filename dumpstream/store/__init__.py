"""
Document store backends.

This module provides the DocumentStore protocol and its implementations:
- MongoDocumentStore: MongoDB via pymongo (production)
- InMemoryDocumentStore: For testing

Invariants:
    - Backends never list store-internal collections
    - Documents cross the interface as raw BSON bytes
"""

from .base import CollectionHandle, DocumentStore, is_internal_name
from .memory import InMemoryCollection, InMemoryDocumentStore
from .mongo import MongoCollection, MongoDocumentStore

__all__ = [
    # Protocol
    "CollectionHandle",
    "DocumentStore",
    "is_internal_name",
    # Implementations
    "MongoCollection",
    "MongoDocumentStore",
    "InMemoryCollection",
    "InMemoryDocumentStore",
]
