"""Memos: memory storage service with hybrid keyword/vector search."""

__version__ = "0.3.0"
