"""
Shared fixtures for the modelgraph tests.

Every fixture builds independent instances, so tests never share state.
"""

import sys
from pathlib import Path

import pytest

# Ensure the package is importable without installation
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from modelgraph.editor import GraphEditor
from modelgraph.layout_cache import LayoutCache
from modelgraph.storage.memory_backend import InMemoryBackend
from modelgraph.store import GraphModelStore


def _entity_state(store: GraphModelStore) -> dict:
    """Order-independent view of every entity, for exact before/after comparisons."""
    entities = store.snapshot_entities()
    return {
        "nodes": sorted(entities["nodes"], key=lambda r: r["id"]),
        "edges": sorted(entities["edges"], key=lambda r: r["id"]),
        "dataObjects": sorted(entities["dataObjects"], key=lambda r: r["id"]),
        "componentData": sorted(entities["componentData"], key=lambda r: (r["nodeId"], r["dataObjectId"])),
        "edgeDataFlows": sorted(entities["edgeDataFlows"], key=lambda r: (r["edgeId"], r["dataObjectId"])),
    }


@pytest.fixture
def entity_state():
    return _entity_state


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def store(backend):
    """A loaded store with the Global container in place."""
    s = GraphModelStore(backend)
    s.refresh()
    s.ensure_global_container()
    return s


@pytest.fixture
def layout_cache(tmp_path):
    return LayoutCache(tmp_path / "layout")


@pytest.fixture
def editor(backend, layout_cache):
    return GraphEditor("test-project", backend, layout_cache).open()
