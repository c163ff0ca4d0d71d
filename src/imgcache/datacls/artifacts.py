from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .. import constants
from ..constants import CacheStatus, ResultState


class Artifact(BaseModel):
    """
        Class represents one buildable container image.

        Everything except ``name`` is part of the build-configuration
        fragment, extra keys included.
    """
    model_config = ConfigDict(frozen=True, extra="allow")

    name: str
    image: str
    context: str = "."
    dockerfile: str = constants.DOCKERFILE_NAME
    build_args: Dict[str, str] = Field(default_factory=dict)
    target: Optional[str] = None

    def fragment(self) -> Dict[str, Any]:
        """Build-configuration fragment fed into the artifact digest."""
        return self.model_dump(exclude={"name"}, mode="json")


class BuiltArtifact(BaseModel):
    """
        Class represents what a builder produced for one artifact.
    """
    name: str
    image: str
    image_id: Optional[str] = None
    remote_digest: Optional[str] = None


class ArtifactResult(BaseModel):
    """
        Class represents the outcome of one artifact in one build round.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    status: CacheStatus
    state: ResultState
    image: Optional[str] = None
    digest: Optional[str] = None
    reason: str = ""
    error: Optional[BaseException] = Field(default=None, exclude=True)

    @property
    def ok(self) -> bool:
        return self.state in (ResultState.HIT, ResultState.BUILT)


class RoundReport(BaseModel):
    """
        Class represents the outcome of a whole build round.
    """
    results: List[ArtifactResult] = Field(default_factory=list)
    flushed: bool = False
    pruned: bool = False

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed(self) -> List[ArtifactResult]:
        return [r for r in self.results if r.state is ResultState.FAILED]

    @property
    def hits(self) -> List[ArtifactResult]:
        return [r for r in self.results if r.state is ResultState.HIT]

    @property
    def built(self) -> List[ArtifactResult]:
        return [r for r in self.results if r.state is ResultState.BUILT]

    def by_name(self) -> Dict[str, ArtifactResult]:
        return {r.name: r for r in self.results}

    def images(self) -> Dict[str, str]:
        """Image reference per successful artifact, for the deploy step."""
        return {r.name: r.image for r in self.results if r.ok and r.image}
