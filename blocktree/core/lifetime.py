from __future__ import annotations

"""Cancellation tokens tied to node lifetime.

Some node kinds load data asynchronously (e.g. a table view fetching rows).
The document may be edited, or the node deleted, while such a fetch is
outstanding. Each fetch asks for the token of its node and checks it before
applying the result; the token is cancelled as soon as the node's
``deleted`` event is seen.
"""

import logging
from threading import Event, RLock
from typing import Callable, Dict, Optional

from blocktree.core.exceptions import BlockTreeError
from blocktree.core.services.change_notifier import DELETED, NodeEvent

logger = logging.getLogger(__name__)

__all__ = ["CancellationToken", "LifetimeRegistry", "OperationCancelled"]


class OperationCancelled(BlockTreeError):
    """Raised by :meth:`CancellationToken.raise_if_cancelled`."""
    pass


class CancellationToken:
    """Thread-safe one-way cancellation flag for a single node."""

    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        self._event = Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Node was removed while work was pending", node_id=self.node_id)

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"CancellationToken(node_id={self.node_id!r}, {state})"


class LifetimeRegistry:
    """Hands out one token per live node and cancels it on deletion.

    Fetch workers may run on other threads, so token bookkeeping is guarded
    by a lock; cancellation itself only ever happens on the editor thread
    through :meth:`handle_event`.
    """

    def __init__(self, is_alive: Optional[Callable[[str], bool]] = None) -> None:
        """Initialize the registry.

        Args:
            is_alive: Tells whether a node id is still in the document; tokens
                asked for ids it rejects come back already cancelled
        """
        self._tokens: Dict[str, CancellationToken] = {}
        self._lock = RLock()
        self._is_alive = is_alive

    def token_for(self, node_id: str) -> CancellationToken:
        """Return the live token for ``node_id``, creating it on first use.

        A node that already left the document gets a cancelled token, so a
        fetch started after the deletion never applies its result.
        """
        with self._lock:
            token = self._tokens.get(node_id)
            if token is None and self._is_alive is not None and not self._is_alive(node_id):
                token = CancellationToken(node_id)
                token.cancel()
                logger.debug("Token requested for removed node %s", node_id)
                return token
            if token is None:
                token = CancellationToken(node_id)
                self._tokens[node_id] = token
            return token

    def cancel(self, node_id: str) -> bool:
        """Cancel and forget the token of ``node_id``; return True if one existed."""
        with self._lock:
            token = self._tokens.pop(node_id, None)
        if token is None:
            return False
        token.cancel()
        logger.debug("Cancelled pending work for node %s", node_id)
        return True

    def cancel_all(self) -> None:
        with self._lock:
            tokens = list(self._tokens.values())
            self._tokens.clear()
        for token in tokens:
            token.cancel()

    def handle_event(self, event: NodeEvent) -> None:
        """ChangeNotifier listener: cancel tokens of deleted nodes."""
        if event.kind == DELETED:
            self.cancel(event.node_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
