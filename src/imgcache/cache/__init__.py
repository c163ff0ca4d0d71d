"""
imgcache Cache Module


The artifact build cache consists of the following components:
- FileHasher: Digest of a single dependency (path identity and content)
- ArtifactHasher: Order-independent digest of an artifact's inputs
- CacheEntry: Last known build result of one artifact
- CacheStore: Loading, staging and atomic persistence of cache entries
- CacheController: Hit/miss decisions and builder invocation per round
- RetentionPolicy: Whether intermediate build state is pruned after a round
"""

from .hasher import FileHasher, ArtifactHasher
from .view import CacheEntry
from .store import CacheStore
from .retention import RetentionPolicy
from .controller import CacheController

__all__ = [
    'FileHasher',
    'ArtifactHasher',
    'CacheEntry',
    'CacheStore',
    'RetentionPolicy',
    'CacheController',
]
