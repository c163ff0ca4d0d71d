"""
Content and artifact hashing.

``FileHasher`` fingerprints a single dependency (path identity plus bytes);
``ArtifactHasher`` folds every dependency fingerprint and the artifact's
build-configuration fragment into one order-independent digest.
"""

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Union

from .. import constants
from ..datacls import Artifact
from ..exceptions import DependencyReadError, DependencyResolutionError, HashError
from ..protocols import BuilderProtocol, HasherProtocol

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def _digest(*parts: str) -> str:
    h = hashlib.sha256()
    for i, part in enumerate(parts):
        if i:
            h.update(b"\0")
        h.update(part.encode("utf-8", "surrogateescape"))
    return constants.DIGEST_PREFIX + h.hexdigest()


class FileHasher:
    """Default content hasher: sha256 over the path identity and the content.

    Paths under ``root`` are identified by their POSIX path relative to it,
    so relocating a whole workspace keeps digests stable while renaming a
    file inside it does not.
    """

    def __init__(self, root: Optional[PathLike] = None, chunk_size: int = constants.HASH_CHUNK_SIZE):
        self.root = Path(os.path.abspath(root)) if root is not None else None
        self.chunk_size = chunk_size

    def hash(self, path: PathLike) -> str:
        p = Path(os.path.abspath(path))
        try:
            if p.is_dir():
                content = self._hash_tree(p)
            else:
                content = self._hash_file(p)
        except OSError as e:
            raise DependencyReadError(f"Cannot read dependency '{path}': {e}") from e
        return _digest(self._identity(p), content)

    def _identity(self, path: Path) -> str:
        if self.root is not None:
            try:
                return path.relative_to(self.root).as_posix()
            except ValueError:
                pass
        return path.as_posix()

    def _hash_file(self, path: Path) -> str:
        h = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(self.chunk_size), b""):
                h.update(chunk)
        return h.hexdigest()

    def _hash_tree(self, directory: Path) -> str:
        """Canonical digest of a directory: sorted relative paths and their contents."""
        h = hashlib.sha256()
        for current, dirnames, filenames in os.walk(directory, onerror=_raise):
            dirnames.sort()
            for filename in sorted(filenames):
                file_path = Path(current) / filename
                rel = file_path.relative_to(directory).as_posix()
                h.update(f"{rel}\0{self._hash_file(file_path)}\n".encode("utf-8", "surrogateescape"))
        return h.hexdigest()


def _raise(error: OSError):
    raise error


class ArtifactHasher:
    """Computes the digest identifying an artifact's build inputs."""

    def __init__(self, builder: BuilderProtocol, hasher: Optional[HasherProtocol] = None):
        self.builder = builder
        self.hasher = hasher if hasher is not None else FileHasher()

    def dependencies(self, artifact: Artifact) -> List[str]:
        try:
            return list(self.builder.dependencies_for(artifact))
        except HashError:
            raise
        except Exception as e:
            raise DependencyResolutionError(f"Cannot list dependencies of '{artifact.name}': {e}") from e

    def hash(self, artifact: Artifact) -> str:
        """
        Digest of ``artifact``'s dependencies and build configuration.

        The per-dependency digests are sorted before combining, so the order
        in which the builder reports dependencies never matters.

        Raises:
            HashError: the digest is unknown and the artifact must be built
        """
        deps = self.dependencies(artifact)
        try:
            digests = sorted(self.hasher.hash(dep) for dep in deps)
        except HashError:
            raise
        except Exception as e:
            raise DependencyReadError(f"Cannot read dependencies of '{artifact.name}': {e}") from e

        h = hashlib.sha256()
        h.update(json.dumps(artifact.fragment(), sort_keys=True, separators=(",", ":")).encode("utf-8"))
        for d in digests:
            h.update(b"\n")
            h.update(d.encode("utf-8", "surrogateescape"))
        digest = constants.DIGEST_PREFIX + h.hexdigest()
        logger.debug(f"[{artifact.name}] {len(deps)} dependencies hashed to {digest}")
        return digest
