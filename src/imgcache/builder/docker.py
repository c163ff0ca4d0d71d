import fnmatch
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from python_on_whales import docker
from python_on_whales.exceptions import DockerException

from .. import constants
from ..datacls import Artifact, BuiltArtifact
from ..exceptions import ArtifactBuildError, DependencyResolutionError, PruneError

logger = logging.getLogger(__name__)


def repository_of(image: str) -> str:
    """Strip the tag or digest from an image reference (registry ports are kept)."""
    image = image.split("@", 1)[0]
    slash = image.rfind("/")
    colon = image.rfind(":")
    if colon > slash:
        return image[:colon]
    return image


class DockerBuilder:
    """
    Builder backed by the local Docker daemon through python-on-whales.

    Dependencies are the files of the artifact's build context that the
    daemon would receive, i.e. everything not excluded by `.dockerignore`.
    """

    def __init__(self, client=None, push: bool = False, extra_labels: Optional[Dict[str, str]] = None):
        self.client = client if client is not None else docker
        self.push = push
        self.extra_labels = dict(extra_labels or {})

    @classmethod
    def from_options(cls, options, client=None) -> "DockerBuilder":
        return cls(client=client, push=options.push, extra_labels=options.labels())

    # ------------------------------------------------------------------
    # dependencies
    # ------------------------------------------------------------------

    def dependencies_for(self, artifact: Artifact) -> List[str]:
        context = Path(artifact.context)
        if not context.is_dir():
            raise DependencyResolutionError(f"[{artifact.name}] build context '{context}' is not a directory")

        dockerfile = self._dockerfile(artifact)
        if not dockerfile.is_file():
            raise DependencyResolutionError(f"[{artifact.name}] Dockerfile '{dockerfile}' not found")

        patterns = self._load_ignore_patterns(context)
        can_prune_dirs = not any(p.startswith("!") for p in patterns)

        deps = []
        for current, dirnames, filenames in os.walk(context, onerror=_raise):
            rel_dir = Path(current).relative_to(context).as_posix()
            rel_dir = "" if rel_dir == "." else rel_dir
            if can_prune_dirs:
                dirnames[:] = [d for d in dirnames if not self._should_ignore(_join(rel_dir, d), patterns)]
            for filename in filenames:
                rel_path = _join(rel_dir, filename)
                if self._should_ignore(rel_path, patterns):
                    logger.debug(f"[{artifact.name}] Ignoring {rel_path}")
                    continue
                deps.append(str(Path(current) / filename))

        if str(dockerfile) not in deps:
            deps.append(str(dockerfile))
        logger.debug(f"[{artifact.name}] {len(deps)} dependencies in {context}")
        return deps

    def _dockerfile(self, artifact: Artifact) -> Path:
        dockerfile = Path(artifact.dockerfile)
        if dockerfile.is_absolute():
            return dockerfile
        return Path(artifact.context) / dockerfile

    def _load_ignore_patterns(self, context: Path) -> List[str]:
        """Default patterns followed by the context's .dockerignore, if any."""
        patterns = list(constants.DEFAULT_IGNORE_PATTERNS)
        ignore_file = context / constants.DOCKERIGNORE_NAME
        if ignore_file.is_file():
            try:
                for line in ignore_file.read_text(encoding="utf-8").splitlines():
                    line = line.strip()
                    if line and not line.startswith("#"):
                        patterns.append(line)
            except OSError as e:
                raise DependencyResolutionError(f"Cannot read {ignore_file}: {e}") from e
        return patterns

    def _should_ignore(self, rel_path: str, patterns: List[str]) -> bool:
        """Last matching pattern wins, `!pattern` re-includes."""
        ignored = False
        for pattern in patterns:
            negate = pattern.startswith("!")
            pattern = _normalize_pattern(pattern[1:] if negate else pattern)
            if not pattern:
                continue
            if fnmatch.fnmatch(rel_path, pattern) or fnmatch.fnmatch(rel_path, f"{pattern}/*"):
                ignored = not negate
        return ignored

    # ------------------------------------------------------------------
    # build / prune / labels
    # ------------------------------------------------------------------

    def build(self, artifacts: List[Artifact], tags: Optional[Dict[str, str]] = None) -> List[BuiltArtifact]:
        tags = tags or {}
        built = []
        for artifact in artifacts:
            tag = tags.get(artifact.name, f"{artifact.image}:{constants.DEFAULT_TAG}")
            logger.debug(f"[{artifact.name}] docker build {artifact.context} -> {tag}")
            try:
                image = self.client.build(
                    artifact.context,
                    file=str(self._dockerfile(artifact)),
                    tags=[tag],
                    build_args=artifact.build_args,
                    target=artifact.target,
                    labels=self.labels(),
                    load=True,
                )
            except DockerException as e:
                raise ArtifactBuildError(artifact.name, f"docker build failed: {e}") from e

            remote_digest = None
            if self.push:
                remote_digest = self._push(artifact.name, tag)

            built.append(BuiltArtifact(
                name=artifact.name,
                image=tag,
                image_id=getattr(image, "id", None),
                remote_digest=remote_digest,
            ))
        return built

    def _push(self, name: str, tag: str) -> Optional[str]:
        try:
            self.client.image.push(tag)
            inspected = self.client.image.inspect(tag)
        except DockerException as e:
            raise ArtifactBuildError(name, f"docker push failed: {e}") from e

        repository = repository_of(tag)
        for repo_digest in inspected.repo_digests or []:
            repo, _, digest = repo_digest.partition("@")
            if repo == repository and digest:
                return digest
        logger.warning(f"[{name}] No registry digest recorded for {tag} after push")
        return None

    def prune(self) -> None:
        try:
            self.client.buildx.prune()
        except DockerException as e:
            raise PruneError(f"docker builder prune failed: {e}") from e

    def labels(self) -> Dict[str, str]:
        labels = {constants.BUILDER_LABEL: "docker"}
        labels.update(self.extra_labels)
        return labels

    # ------------------------------------------------------------------
    # presence checks
    # ------------------------------------------------------------------

    def image_exists(self, image: str) -> bool:
        try:
            return bool(self.client.image.exists(image))
        except DockerException as e:
            logger.debug(f"Cannot inspect local image '{image}': {e}")
            return False

    def remote_digest_exists(self, image: str, digest: str) -> bool:
        reference = f"{repository_of(image)}@{digest}"
        try:
            self.client.manifest.inspect(reference)
        except DockerException as e:
            logger.debug(f"Registry does not serve '{reference}': {e}")
            return False
        return True


def _join(rel_dir: str, name: str) -> str:
    return f"{rel_dir}/{name}" if rel_dir else name


def _normalize_pattern(pattern: str) -> str:
    pattern = pattern.strip().replace("\\", "/")
    if pattern.startswith("./"):
        pattern = pattern[2:]
    return pattern.strip("/")


def _raise(error: OSError):
    raise DependencyResolutionError(f"Cannot walk build context: {error}") from error
