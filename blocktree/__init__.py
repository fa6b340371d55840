"""Top-level package for the block tree editing core.

Editor shells (page view, canvas view, history, persistence) should only
depend on the public API exposed here rather than importing internal modules
directly.
"""

from .core.context import DocumentContext  # re-export for convenience
from .core.models import Document, Node, NodeKind

__all__: list[str] = [
    "DocumentContext",
    "Document",
    "Node",
    "NodeKind",
]
