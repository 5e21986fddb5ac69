"""
Storage backend abstraction for modelgraph.

Supports multiple storage backends:
- InMemoryBackend: Dict-backed storage for tests and offline sessions
- FileBackend: Local JSON files, one per entity (default)
- HttpBackend: Remote model API over HTTP
"""

from modelgraph.storage.protocol import ModelBackend
from modelgraph.storage.memory_backend import InMemoryBackend
from modelgraph.storage.file_backend import FileBackend
from modelgraph.storage.http_backend import HttpBackend
from modelgraph.storage.factory import create_backend
from modelgraph.storage.restore import RestoredModel, normalize_snapshot

__all__ = [
    'ModelBackend',
    'InMemoryBackend',
    'FileBackend',
    'HttpBackend',
    'create_backend',
    'RestoredModel',
    'normalize_snapshot',
]
