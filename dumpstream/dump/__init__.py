"""
Dump side of mongo-dump-stream.

The DumpWriter walks a DocumentStore in a fixed order and writes the
envelope, collection metadata, documents and end markers to a ByteSink.
"""

from .writer import DumpResult, DumpWriter

__all__ = ["DumpWriter", "DumpResult"]
