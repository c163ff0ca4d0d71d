"""
imgcache Protocol Definitions

This module contains the Protocol definitions for the collaborators the
cache core talks to.

Protocols are the foundation layer with zero dependencies on other imgcache modules.
"""

from typing import Protocol, Dict, Any, List, Optional, runtime_checkable


# ============================================================================
# Hasher Protocols
# ============================================================================

@runtime_checkable
class HasherProtocol(Protocol):
    """
    Protocol for content hashers.

    A content hasher turns one dependency path into a digest that captures
    both the path identity and its content.
    """

    def hash(self, path: str) -> str:
        """
        Compute the digest of a single dependency.

        Args:
            path: File or directory path

        Returns:
            Opaque digest string

        Raises:
            DependencyReadError: if the path is unreadable at hash time
        """
        ...


# ============================================================================
# Builder Protocols
# ============================================================================

@runtime_checkable
class BuilderProtocol(Protocol):
    """
    Protocol for builder implementations.

    Builders enumerate an artifact's build inputs and perform the actual
    (expensive) build. The cache never builds anything itself.
    """

    def dependencies_for(self, artifact: Any) -> List[str]:
        """
        Enumerate the files an artifact's build depends on.

        Args:
            artifact: Artifact to inspect

        Returns:
            Dependency paths, in no particular order
        """
        ...

    def build(self, artifacts: List[Any], tags: Optional[Dict[str, str]] = None) -> List[Any]:
        """
        Build artifacts.

        Args:
            artifacts: Artifacts to build
            tags: Mapping of artifact name to the image tag to produce

        Returns:
            One BuiltArtifact per built artifact
        """
        ...

    def prune(self) -> None:
        """Reclaim builder-internal intermediate state."""
        ...

    def labels(self) -> Dict[str, str]:
        """Labels attached to every build output."""
        ...


@runtime_checkable
class ImageInspectorProtocol(Protocol):
    """
    Protocol for checking that a previously built image still exists.
    """

    def image_exists(self, image: str) -> bool:
        """Whether the image reference is present locally."""
        ...

    def remote_digest_exists(self, image: str, digest: str) -> bool:
        """Whether the registry still serves ``image`` at ``digest``."""
        ...
