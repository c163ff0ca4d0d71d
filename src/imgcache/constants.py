from enum import Enum

# --- Log and Debug ---
# Short aliases for module names to keep CLI/env concise
LOG_ALIAS_MAP = {
    "hash": "imgcache.cache.hasher",
    "hsh": "imgcache.cache.hasher",
    "store": "imgcache.cache.store",
    "st": "imgcache.cache.store",
    "ctl": "imgcache.cache.controller",
    "controller": "imgcache.cache.controller",
    "ret": "imgcache.cache.retention",
    "cache": "imgcache.cache",
    "cc": "imgcache.cache",
    "docker": "imgcache.builder.docker",
    "bld": "imgcache.builder",
    "conf": "imgcache.config",
    "cli": "imgcache.cli",
}

# Top-level modules within imgcache for auto-prefixing
KNOWN_TOP_MODULES = {
    "builder",
    "cache",
    "datacls",
    "utils",
    "exceptions",
    "config",
    "cli",
}

LOG_LEVELS_ENV = "IMGC_LOG_LEVELS"

# --- Filenames and Paths ---
DEFAULT_CACHE_DIR = "~/.imgcache"
DEFAULT_CACHE_FILENAME = "cache.json"
DEFAULT_CACHE_FILE = f"{DEFAULT_CACHE_DIR}/{DEFAULT_CACHE_FILENAME}"
DOCKERFILE_NAME = "Dockerfile"
DOCKERIGNORE_NAME = ".dockerignore"

# --- Cache file layout ---
CACHE_SCHEMA_VERSION = 1
CACHE_ARTIFACTS_KEY = "artifacts"
CACHE_VERSION_KEY = "version"

# --- Hashing ---
DIGEST_ALGORITHM = "sha256"
DIGEST_PREFIX = f"{DIGEST_ALGORITHM}:"
HASH_CHUNK_SIZE = 64 * 1024

# --- Run modes and labels ---
DEV_COMMAND = "dev"
LABEL_PREFIX = "imgcache.dev"
BUILDER_LABEL = "imgcache.builder"
DEFAULT_TAG = "dev"
DEFAULT_CONCURRENCY = 4

# Paths never considered build inputs, on top of .dockerignore
# (fnmatch semantics: `*` also matches `/`)
DEFAULT_IGNORE_PATTERNS = [
    ".git",
    "*/.git",
    "__pycache__",
    "*/__pycache__",
    "*.pyc",
    ".pytest_cache",
    "*/.pytest_cache",
    ".DS_Store",
    "*/.DS_Store",
    "*.swp",
    "*~",
]


class CacheStatus(str, Enum):
    """Classification of an artifact before any build is attempted."""
    HIT = "hit"
    MISS = "miss"
    STALE = "stale"
    FORCED = "forced"
    DISABLED = "disabled"


class ResultState(str, Enum):
    """Terminal state of an artifact at the end of a round."""
    HIT = "hit"
    BUILT = "built"
    FAILED = "failed"
    CANCELLED = "cancelled"
