class ImgCacheError(Exception):
    """Base exception for all application-specific errors."""

    pass


# --- 1. Errors related to loading and parsing the project file ---
class ConfigurationError(ImgCacheError):
    """Base class for errors encountered while finding, reading, or parsing project files."""

    pass


class ConfigFileMissingError(ConfigurationError):
    """Raised when the project file cannot be found."""

    pass


class ConfigParsingError(ConfigurationError):
    """Raised when a YAML project file is syntactically incorrect."""

    pass


class ConfigValidationError(ConfigurationError):
    """Raised when the project file fails structural validation (e.g., Pydantic)."""

    pass


# --- 2. Errors that occur while computing an artifact digest ---
class HashError(ImgCacheError):
    """Base class for errors that leave an artifact's digest unknown."""

    pass


class DependencyResolutionError(HashError):
    """Raised when the builder cannot enumerate an artifact's dependencies."""

    pass


class DependencyReadError(HashError):
    """Raised when a dependency is unreadable at hash time (vanished, permission, I/O)."""

    pass


# --- 3. Errors related to the persisted cache file ---
class CacheError(ImgCacheError):
    """Base class for cache store errors. Always absorbed by the store itself."""

    pass


class CacheCorruptError(CacheError):
    """Raised when the cache file cannot be parsed."""

    pass


class CachePersistError(CacheError):
    """Raised when the cache file cannot be written back."""

    pass


# --- 4. Errors that occur while building or pruning ---
class BuildError(ImgCacheError):
    """Base class for errors raised by a builder."""

    pass


class ArtifactBuildError(BuildError):
    """Raised when a builder fails to produce an artifact."""

    def __init__(self, artifact: str, message: str):
        super().__init__(f"[{artifact}] {message}")
        self.artifact = artifact


class PruneError(BuildError):
    """Raised when a builder fails to reclaim intermediate build state."""

    pass
