"""
mongo-dump-stream test suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Dump/load round trips over the in-memory store
- e2e/: End-to-end tests against a running MongoDB
"""
