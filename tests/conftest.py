import threading

import pytest

from imgcache.config import RunOptions
from imgcache.datacls import Artifact, BuiltArtifact
from imgcache.exceptions import ArtifactBuildError, DependencyReadError


class FakeBuilder:
    """In-memory builder and image inspector."""

    def __init__(self, deps=None):
        self.deps = dict(deps or {})
        self.build_calls = []
        self.fail = set()
        self.dep_errors = set()
        self.present = set()
        self.remote = {}
        self.prune_calls = 0
        self.gate = None
        self._lock = threading.Lock()

    def dependencies_for(self, artifact):
        if artifact.name in self.dep_errors:
            raise RuntimeError("cannot enumerate dependencies")
        return list(self.deps.get(artifact.name, []))

    def build(self, artifacts, tags=None):
        tags = tags or {}
        with self._lock:
            self.build_calls.append([a.name for a in artifacts])
        if self.gate is not None:
            self.gate(artifacts)
        built = []
        for artifact in artifacts:
            if artifact.name in self.fail:
                raise ArtifactBuildError(artifact.name, "boom")
            image = tags.get(artifact.name, f"{artifact.image}:dev")
            with self._lock:
                self.present.add(image)
            built.append(BuiltArtifact(name=artifact.name, image=image, image_id=f"sha256:{artifact.name}"))
        return built

    def prune(self):
        self.prune_calls += 1

    def labels(self):
        return {}

    def image_exists(self, image):
        return image in self.present

    def remote_digest_exists(self, image, digest):
        return self.remote.get(image) == digest

    def built_names(self):
        return [name for call in self.build_calls for name in call]


class StubHasher:
    """Deterministic hasher without file I/O; paths listed in `unreadable` fail."""

    def __init__(self):
        self.unreadable = set()
        self.contents = {}

    def hash(self, path):
        if path in self.unreadable:
            raise DependencyReadError(f"cannot read {path}")
        return f"stub:{path}:{self.contents.get(path, '')}"


@pytest.fixture
def fake_builder():
    return FakeBuilder()


@pytest.fixture
def stub_hasher():
    return StubHasher()


@pytest.fixture
def make_artifact():
    def _make(name="web", **kwargs):
        kwargs.setdefault("image", f"registry.local/{name}")
        return Artifact(name=name, **kwargs)
    return _make


@pytest.fixture
def make_options(tmp_path):
    def _make(**kwargs):
        kwargs.setdefault("cache_file", str(tmp_path / "cache.json"))
        return RunOptions(**kwargs)
    return _make
