"""Shared fixtures for the block tree test-suite.

Documents are built from plain :class:`Node` instances with readable ids so
assertions can talk about ``"a"``, ``"b"``... instead of generated uuids.
"""

import logging
import os
import sys
from typing import List

import pytest

# Ensure project root is importable when running pytest from repository root
_REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

from blocktree.config import ConfigManager
from blocktree.core.context import DocumentContext
from blocktree.core.models import Document, Node, NodeKind
from blocktree.core.services.change_notifier import DELETED, UPDATED, NodeEvent

logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


class RecordingListener:
    """ChangeNotifier listener that keeps every event it receives."""

    def __init__(self):
        self.events: List[NodeEvent] = []

    def __call__(self, event: NodeEvent) -> None:
        self.events.append(event)

    def updated_ids(self) -> List[str]:
        return [e.node_id for e in self.events if e.kind == UPDATED]

    def deleted_ids(self) -> List[str]:
        return [e.node_id for e in self.events if e.kind == DELETED]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep user config dirs out of the tests: overrides come from a temp dir."""
    monkeypatch.setenv("BLOCKTREE_CONFIG_DIR", str(tmp_path))
    ConfigManager.reset()
    yield tmp_path
    ConfigManager.reset()


@pytest.fixture
def make_node():
    """Factory: make_node(kind, id, *children, **properties)."""
    def _make(kind, node_id, *children, **properties):
        return Node(kind=NodeKind(kind), id=node_id, properties=dict(properties), children=list(children))
    return _make


@pytest.fixture
def make_context():
    """Factory: make_context(*roots, **context_kwargs) -> DocumentContext."""
    contexts = []

    def _make(*roots, **kwargs):
        ctx = DocumentContext(Document(roots), **kwargs)
        contexts.append(ctx)
        return ctx

    yield _make
    for ctx in contexts:
        ctx.close()


@pytest.fixture
def recorder():
    return RecordingListener()
