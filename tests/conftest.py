import os
import queue
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sessions import BroadcastCoordinator, SessionRegistry  # noqa: E402


@pytest.fixture
def doc(tmp_path):
    path = tmp_path / "doc.md"
    path.write_text("# A\n", encoding="utf-8")
    return path


@pytest.fixture
def registry(doc):
    return SessionRegistry(doc)


@pytest.fixture
def coordinator(registry):
    return BroadcastCoordinator(registry)


def drain(viewer, timeout=0.01):
    """Everything queued for ``viewer`` right now, as a list of (event, data)."""
    events = []
    while True:
        try:
            item = viewer.receive(timeout=timeout)
        except queue.Empty:
            return events
        if item is None:
            return events
        events.append(item)
