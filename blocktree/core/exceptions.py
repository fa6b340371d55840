from __future__ import annotations

"""Block tree exception classes.

Every structural failure raised by the mutation layer derives from
:class:`BlockTreeError` so interaction handlers can catch a single type,
abort the gesture and report the problem without crashing the host.
"""

from typing import Optional


class BlockTreeError(Exception):
    """Base exception for all block tree errors.

    Carries the id of the node the failure is about, when known, so that
    callers can highlight or drop it from their own caches.
    """

    def __init__(self, message: str, node_id: Optional[str] = None,
                 cause: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.node_id = node_id
        self.cause = cause

    def __str__(self) -> str:
        if self.node_id:
            return f"[Node: {self.node_id}] {super().__str__()}"
        return super().__str__()


class NotFound(BlockTreeError):
    """Raised when an operation references a node id absent from the document.

    Typical source: the drop target was deleted while a drag was in flight.
    """
    pass


class InvalidTarget(BlockTreeError):
    """Raised when a placement would break the tree shape.

    This covers cycles (placing a node under itself or one of its
    descendants), placing a node under a non-container, and the columns
    placement rules.
    """

    def __init__(self, message: str, node_id: Optional[str] = None,
                 target_id: Optional[str] = None,
                 cause: Optional[Exception] = None) -> None:
        super().__init__(message, node_id, cause)
        self.target_id = target_id


class InvariantViolation(BlockTreeError):
    """Raised when the tree is found in a state normalization cannot resolve.

    Should not occur while the mutation engine is the only mutation path.
    """
    pass


__all__ = [
    "BlockTreeError",
    "NotFound",
    "InvalidTarget",
    "InvariantViolation",
]
