import itertools
import os
import sys
from types import SimpleNamespace

import pytest

from imgcache.cache.hasher import ArtifactHasher, FileHasher
from imgcache.exceptions import DependencyReadError, DependencyResolutionError


class TestArtifactHasherWithStub:
    """Digest combination logic, without touching the filesystem."""

    @pytest.mark.parametrize("order", list(itertools.permutations(["a", "b", "c"])))
    def test_dependency_order_does_not_matter(self, order, fake_builder, stub_hasher, make_artifact):
        artifact = make_artifact()
        hasher = ArtifactHasher(fake_builder, stub_hasher)

        fake_builder.deps["web"] = ["a", "b", "c"]
        expected = hasher.hash(artifact)

        fake_builder.deps["web"] = list(order)
        assert hasher.hash(artifact) == expected

    def test_two_element_permutation(self, fake_builder, stub_hasher, make_artifact):
        artifact = make_artifact()
        hasher = ArtifactHasher(fake_builder, stub_hasher)
        fake_builder.deps["web"] = ["a", "b"]
        first = hasher.hash(artifact)
        fake_builder.deps["web"] = ["b", "a"]
        assert hasher.hash(artifact) == first

    def test_digest_format(self, fake_builder, stub_hasher, make_artifact):
        digest = ArtifactHasher(fake_builder, stub_hasher).hash(make_artifact())
        assert digest.startswith("sha256:")
        assert len(digest) == len("sha256:") + 64

    def test_empty_dependencies_are_stable(self, fake_builder, stub_hasher, make_artifact):
        hasher = ArtifactHasher(fake_builder, stub_hasher)
        artifact = make_artifact()
        assert hasher.hash(artifact) == hasher.hash(artifact)

    def test_config_change_changes_digest(self, fake_builder, stub_hasher, make_artifact):
        hasher = ArtifactHasher(fake_builder, stub_hasher)
        fake_builder.deps["web"] = ["a"]
        base = hasher.hash(make_artifact(build_args={"VERSION": "1"}))
        assert hasher.hash(make_artifact(build_args={"VERSION": "2"})) != base
        assert hasher.hash(make_artifact(target="debug", build_args={"VERSION": "1"})) != base

    def test_config_change_without_dependencies(self, fake_builder, stub_hasher, make_artifact):
        hasher = ArtifactHasher(fake_builder, stub_hasher)
        assert hasher.hash(make_artifact(dockerfile="Dockerfile")) != hasher.hash(make_artifact(dockerfile="Dockerfile.dev"))

    def test_name_is_not_part_of_digest(self, fake_builder, stub_hasher, make_artifact):
        hasher = ArtifactHasher(fake_builder, stub_hasher)
        assert hasher.hash(make_artifact("a", image="repo/x")) == hasher.hash(make_artifact("b", image="repo/x"))

    def test_dependency_content_change_changes_digest(self, fake_builder, stub_hasher, make_artifact):
        hasher = ArtifactHasher(fake_builder, stub_hasher)
        fake_builder.deps["web"] = ["a", "b"]
        before = hasher.hash(make_artifact())
        stub_hasher.contents["b"] = "edited"
        assert hasher.hash(make_artifact()) != before

    def test_duplicate_dependencies_count(self, fake_builder, stub_hasher, make_artifact):
        hasher = ArtifactHasher(fake_builder, stub_hasher)
        fake_builder.deps["web"] = ["a"]
        once = hasher.hash(make_artifact())
        fake_builder.deps["web"] = ["a", "a"]
        assert hasher.hash(make_artifact()) != once

    def test_resolver_failure_raises(self, fake_builder, stub_hasher, make_artifact):
        fake_builder.dep_errors.add("web")
        with pytest.raises(DependencyResolutionError, match="cannot enumerate"):
            ArtifactHasher(fake_builder, stub_hasher).hash(make_artifact())

    def test_unreadable_dependency_raises(self, fake_builder, stub_hasher, make_artifact):
        fake_builder.deps["web"] = ["a", "gone"]
        stub_hasher.unreadable.add("gone")
        with pytest.raises(DependencyReadError):
            ArtifactHasher(fake_builder, stub_hasher).hash(make_artifact())


class TestFileHasher:
    """Content hashing against a real temporary directory."""

    @pytest.fixture
    def workspace(self, tmp_path):
        (tmp_path / "foo").write_text("contents")
        return tmp_path

    def _artifact_digest(self, fake_builder, make_artifact, root, paths):
        fake_builder.deps["web"] = [str(p) for p in paths]
        return ArtifactHasher(fake_builder, FileHasher(root=root)).hash(make_artifact())

    def test_change_nothing(self, workspace, fake_builder, make_artifact):
        old = self._artifact_digest(fake_builder, make_artifact, workspace, [workspace / "foo"])
        new = self._artifact_digest(fake_builder, make_artifact, workspace, [workspace / "foo"])
        assert old == new

    def test_change_filename(self, workspace, fake_builder, make_artifact):
        old = self._artifact_digest(fake_builder, make_artifact, workspace, [workspace / "foo"])
        (workspace / "foo").rename(workspace / "newfoo")
        new = self._artifact_digest(fake_builder, make_artifact, workspace, [workspace / "newfoo"])
        assert old != new

    def test_change_file_contents(self, workspace, fake_builder, make_artifact):
        old = self._artifact_digest(fake_builder, make_artifact, workspace, [workspace / "foo"])
        (workspace / "foo").write_text("newcontents")
        new = self._artifact_digest(fake_builder, make_artifact, workspace, [workspace / "foo"])
        assert old != new

    def test_change_both(self, workspace, fake_builder, make_artifact):
        old = self._artifact_digest(fake_builder, make_artifact, workspace, [workspace / "foo"])
        (workspace / "foo").rename(workspace / "newfoo")
        (workspace / "newfoo").write_text("newcontents")
        new = self._artifact_digest(fake_builder, make_artifact, workspace, [workspace / "newfoo"])
        assert old != new

    def test_same_content_different_names_differ(self, tmp_path):
        (tmp_path / "a").write_text("same")
        (tmp_path / "b").write_text("same")
        hasher = FileHasher(root=tmp_path)
        assert hasher.hash(tmp_path / "a") != hasher.hash(tmp_path / "b")

    def test_relocated_workspace_keeps_digest(self, tmp_path):
        first = tmp_path / "one"
        second = tmp_path / "two"
        for root in (first, second):
            (root / "src").mkdir(parents=True)
            (root / "src" / "app.py").write_text("print('hi')")
        assert FileHasher(root=first).hash(first / "src" / "app.py") == \
            FileHasher(root=second).hash(second / "src" / "app.py")

    def test_path_outside_root_uses_absolute_identity(self, tmp_path):
        inside = tmp_path / "root"
        inside.mkdir()
        outside = tmp_path / "other.txt"
        outside.write_text("x")
        assert FileHasher(root=inside).hash(outside) == FileHasher().hash(outside)

    def test_large_file_is_streamed(self, tmp_path):
        big = tmp_path / "big.bin"
        big.write_bytes(b"x" * (3 * 1024 + 17))
        small_chunks = FileHasher(root=tmp_path, chunk_size=1024).hash(big)
        assert small_chunks == FileHasher(root=tmp_path).hash(big)

    def test_directory_digest_tracks_tree(self, tmp_path):
        tree = tmp_path / "assets"
        (tree / "img").mkdir(parents=True)
        (tree / "img" / "logo.svg").write_text("<svg/>")
        (tree / "style.css").write_text("body {}")
        hasher = FileHasher(root=tmp_path)

        before = hasher.hash(tree)
        assert hasher.hash(tree) == before

        (tree / "img" / "logo.svg").write_text("<svg></svg>")
        edited = hasher.hash(tree)
        assert edited != before

        (tree / "img" / "logo.svg").rename(tree / "img" / "brand.svg")
        assert hasher.hash(tree) not in (before, edited)

    def test_missing_file_raises_read_error(self, tmp_path):
        with pytest.raises(DependencyReadError, match="Cannot read dependency"):
            FileHasher().hash(tmp_path / "vanished")

    @pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs POSIX permissions as non-root")
    def test_unreadable_file_raises_read_error(self, tmp_path):
        secret = tmp_path / "secret"
        secret.write_text("x")
        secret.chmod(0)
        try:
            with pytest.raises(DependencyReadError):
                FileHasher().hash(secret)
        finally:
            secret.chmod(0o600)


@pytest.mark.skipif(sys.platform != "linux", reason="needs a filesystem accepting arbitrary bytes in names")
class TestUndecodableNames:
    """File names that are not valid UTF-8 reach the hasher as surrogate escapes."""

    @pytest.fixture
    def latin1_file(self, tmp_path):
        raw = os.path.join(os.fsencode(tmp_path), b"caf\xe9.txt")
        with open(raw, "wb") as f:
            f.write(b"menu")
        return os.fsdecode(raw)

    def test_file_digest(self, tmp_path, latin1_file):
        digest = FileHasher(root=tmp_path).hash(latin1_file)
        assert digest.startswith("sha256:")
        assert digest == FileHasher(root=tmp_path).hash(latin1_file)

    def test_directory_digest(self, tmp_path, latin1_file):
        assert FileHasher(root=tmp_path).hash(tmp_path).startswith("sha256:")

    def test_artifact_digest(self, tmp_path, latin1_file, fake_builder, make_artifact):
        fake_builder.deps["web"] = [latin1_file]
        assert ArtifactHasher(fake_builder, FileHasher(root=tmp_path)).hash(make_artifact()).startswith("sha256:")


class TestInjectedHasherErrors:

    @pytest.mark.parametrize("error", [
        UnicodeEncodeError("utf-8", "\udce9", 0, 1, "surrogates not allowed"),
        ValueError("bad path"),
        OSError("gone"),
    ])
    def test_unexpected_errors_become_read_errors(self, error, fake_builder, make_artifact):
        def broken(path):
            raise error

        fake_builder.deps["web"] = ["a"]
        with pytest.raises(DependencyReadError, match="Cannot read dependencies of 'web'"):
            ArtifactHasher(fake_builder, SimpleNamespace(hash=broken)).hash(make_artifact())
