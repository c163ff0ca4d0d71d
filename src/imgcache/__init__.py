"""
imgcache - Artifact Build Cache

Decides, cheaply and correctly, whether a container image built in a
previous iteration of the edit loop can be reused instead of rebuilt.

Main modules:
- cache: Hashing, cache store, controller and retention policy
- builder: Docker-backed builder and image inspector
- config: Project file and run options
- datacls: Artifact and result models
- utils: Logging setup

Quick start example:
```python
import asyncio
from imgcache import Config, CacheController, CacheStore, DockerBuilder

config = Config("project.yml")
options = config.run_options()
controller = CacheController(DockerBuilder.from_options(options), CacheStore.from_options(options), options)
report = asyncio.run(controller.run(config.artifacts(), config.tags()))
```
"""

__version__ = "0.3.0"

from .protocols import BuilderProtocol, HasherProtocol, ImageInspectorProtocol
from .config import Config, ConfigModel, RunOptions
from .datacls import Artifact, BuiltArtifact, ArtifactResult, RoundReport
from .constants import CacheStatus, ResultState
from .cache import (
    FileHasher,
    ArtifactHasher,
    CacheEntry,
    CacheStore,
    RetentionPolicy,
    CacheController,
)
from .builder import DockerBuilder
from .exceptions import (
    ImgCacheError,
    ConfigurationError,
    ConfigValidationError,
    HashError,
    BuildError,
)

__all__ = [
    # Version
    '__version__',
    # Protocols
    'BuilderProtocol',
    'HasherProtocol',
    'ImageInspectorProtocol',
    # Config
    'Config',
    'ConfigModel',
    'RunOptions',
    # Models
    'Artifact',
    'BuiltArtifact',
    'ArtifactResult',
    'RoundReport',
    'CacheStatus',
    'ResultState',
    # Cache
    'FileHasher',
    'ArtifactHasher',
    'CacheEntry',
    'CacheStore',
    'RetentionPolicy',
    'CacheController',
    # Builder
    'DockerBuilder',
    # Exceptions
    'ImgCacheError',
    'ConfigurationError',
    'ConfigValidationError',
    'HashError',
    'BuildError',
]
