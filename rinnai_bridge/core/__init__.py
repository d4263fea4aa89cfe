"""Core primitives for rinnai-bridge."""

from .utils import deep_merge, lookup_path

__all__ = [
    "deep_merge",
    "lookup_path",
]
