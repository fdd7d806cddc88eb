"""
Shared fixtures for the EPA script tests.

The selection provider and model query below stand in for a CAD host:
handles are plain strings and every call is recorded.
"""

import pytest

from epascript import open_session, HeadlessBinder
from epascript.runtime import SelectionProvider, ModelQuery


class FakeSelection(SelectionProvider):
    """Hands out queued picks and records disposed handles."""

    def __init__(self, picks=None):
        self.picks = list(picks or [])
        self.requests = []
        self.disposed = []

    def select(self, allowed_types, max_selections):
        self.requests.append((list(allowed_types), max_selections))
        return self.picks.pop(0) if self.picks else []

    def dispose(self, handle):
        self.disposed.append(handle)


class FakeQuery(ModelQuery):
    """Fixed measurements and a canned search result."""

    def __init__(self, distance=25.0, length=40.0, found=None):
        self.distance = distance
        self.length = length
        self.found = list(found or [])
        self.searches = []

    def measure_distance(self, first, second, options):
        return self.distance

    def measure_length(self, reference):
        return self.length

    def search_references(self, model, type_name, pattern, multiple, options):
        self.searches.append((model, type_name, pattern, multiple, options))
        return list(self.found)


@pytest.fixture
def binder():
    return HeadlessBinder()


@pytest.fixture
def selection():
    return FakeSelection()


@pytest.fixture
def query():
    return FakeQuery(found=["feat_1", "feat_2"])


@pytest.fixture
def run_script(binder, selection, query):
    """Open a session on script text with the fake collaborators."""
    def _run(source, **kwargs):
        kwargs.setdefault("binder", binder)
        kwargs.setdefault("selection", selection)
        kwargs.setdefault("query", query)
        return open_session(source, **kwargs)
    return _run
