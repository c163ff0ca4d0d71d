import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..config import RunOptions
from ..constants import CacheStatus, ResultState
from ..datacls import Artifact, ArtifactResult, RoundReport
from ..exceptions import ArtifactBuildError, ConfigValidationError, HashError
from ..protocols import BuilderProtocol, HasherProtocol, ImageInspectorProtocol
from .hasher import ArtifactHasher
from .retention import RetentionPolicy
from .store import CacheStore
from .view import CacheEntry

logger = logging.getLogger(__name__)


@dataclass
class _Outcome:
    """What a worker hands back to the controller; only the controller writes to the store."""
    result: ArtifactResult
    entry: Optional[CacheEntry] = None
    invalidate: bool = False


class CacheController:
    """
    Runs one build round: hash every artifact, reuse cached images where it
    is safe to, build the rest, then persist the cache and apply retention.

    Artifacts are processed concurrently on a bounded thread pool. Workers
    never touch the store; their outcomes are recorded one at a time on the
    event loop thread, and outcomes of cancelled artifacts are discarded.
    """

    def __init__(
        self,
        builder: BuilderProtocol,
        store: CacheStore,
        options: RunOptions,
        hasher: Optional[HasherProtocol] = None,
        inspector: Optional[ImageInspectorProtocol] = None,
    ):
        self.builder = builder
        self.store = store
        self.options = options
        self.artifact_hasher = ArtifactHasher(builder, hasher)
        self.retention = RetentionPolicy.from_options(options)
        if inspector is None and isinstance(builder, ImageInspectorProtocol):
            inspector = builder
        self.inspector = inspector
        if self.inspector is None and options.cache_artifacts:
            logger.warning("No image inspector available, cached images cannot be verified and will be rebuilt")

    async def run(
        self,
        artifacts: Sequence[Artifact],
        tags: Optional[Dict[str, str]] = None,
        force: Optional[bool] = None,
    ) -> RoundReport:
        """
        Build ``artifacts``, reusing cached outputs where possible.

        Args:
            artifacts: Artifacts of this round, already ordered by the caller
            tags: Image tag to produce, per artifact name
            force: Rebuild everything; defaults to ``options.force``

        Returns:
            RoundReport: one result per artifact, in input order
        """
        names = [a.name for a in artifacts]
        if len(set(names)) != len(names):
            raise ConfigValidationError(f"Duplicate artifact names in build round: {names}")

        force = self.options.force if force is None else force
        tags = dict(tags or {})
        if self.options.cache_artifacts and not self.store.loaded:
            self.store.load()

        logger.info(f"Starting build round for {len(artifacts)} artifact(s)"
                    f"{' (forced)' if force and self.options.cache_artifacts else ''}")

        results: Dict[str, ArtifactResult] = {}
        loop = asyncio.get_running_loop()
        executor = ThreadPoolExecutor(max_workers=self.options.concurrency, thread_name_prefix="imgcache")
        try:
            futures = {
                loop.run_in_executor(executor, self._process, artifact, tags, force): artifact
                for artifact in artifacts
            }
            try:
                await self._collect(futures, results)
            finally:
                self._cancel_unfinished(futures, results)
        finally:
            # in-flight builds may finish in the background, their results are dropped
            executor.shutdown(wait=False, cancel_futures=True)

        report = RoundReport(results=[results[name] for name in names])
        if self.options.cache_artifacts:
            report.flushed = self.store.flush()
        report.pruned = self.retention.apply(self.builder)

        logger.info(f"Build round finished: {len(report.hits)} cached, {len(report.built)} built, "
                    f"{len(report.failed)} failed")
        return report

    async def _collect(self, futures: Dict[asyncio.Future, Artifact], results: Dict[str, ArtifactResult]):
        pending = set(futures)
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            failed = None
            # every finished outcome is recorded before siblings are cancelled
            for fut in done:
                if fut.cancelled():
                    continue
                outcome: _Outcome = fut.result()
                self._record(outcome)
                results[outcome.result.name] = outcome.result
                if outcome.result.state is ResultState.FAILED and failed is None:
                    failed = outcome.result.name
            if self.options.fail_fast and failed is not None and pending:
                logger.warning(f"[{failed}] failed, cancelling {len(pending)} remaining artifact(s)")
                for other in pending:
                    other.cancel()
                return

    def _cancel_unfinished(self, futures: Dict[asyncio.Future, Artifact], results: Dict[str, ArtifactResult]):
        for fut, artifact in futures.items():
            if artifact.name in results:
                continue
            fut.cancel()
            results[artifact.name] = ArtifactResult(
                name=artifact.name,
                status=CacheStatus.MISS,
                state=ResultState.CANCELLED,
                reason="cancelled",
            )

    def _record(self, outcome: _Outcome):
        if not self.options.cache_artifacts:
            return
        name = outcome.result.name
        if outcome.invalidate:
            self.store.invalidate(name)
        if outcome.entry is not None:
            self.store.put(name, outcome.entry)

    def _process(self, artifact: Artifact, tags: Dict[str, str], force: bool) -> _Outcome:
        """Worker body: hash, classify, build. Runs on a pool thread."""
        name = artifact.name
        if not self.options.cache_artifacts:
            return self._build(artifact, tags, CacheStatus.DISABLED, None, "artifact caching disabled")

        try:
            digest = self.artifact_hasher.hash(artifact)
        except HashError as e:
            logger.warning(f"[{name}] Could not compute digest, rebuilding: {e}")
            outcome = self._build(artifact, tags, CacheStatus.MISS, None, f"hashing failed: {e}")
            outcome.invalidate = True
            return outcome

        if force:
            return self._build(artifact, tags, CacheStatus.FORCED, digest, "forced rebuild")

        status, reason, entry = self.classify(name, digest)
        if status is CacheStatus.HIT:
            logger.info(f"[{name}] Found in cache: {entry.image}")
            return _Outcome(ArtifactResult(
                name=name, status=status, state=ResultState.HIT,
                image=entry.image, digest=digest, reason=reason,
            ))
        return self._build(artifact, tags, status, digest, reason)

    def classify(self, name: str, digest: str) -> Tuple[CacheStatus, str, Optional[CacheEntry]]:
        """Compare a fresh digest with the stored entry for ``name``."""
        entry = self.store.lookup(name)
        if entry is None:
            return CacheStatus.MISS, "not found in cache", None
        if not entry.matches(digest):
            return CacheStatus.MISS, "inputs changed", entry
        if self._output_present(entry):
            return CacheStatus.HIT, "digest matches", entry
        return CacheStatus.STALE, f"cached image '{entry.image}' is gone", entry

    def _output_present(self, entry: CacheEntry) -> bool:
        if self.inspector is None:
            return False
        try:
            if not self.inspector.image_exists(entry.image):
                return False
            if self.options.verify_remote and entry.remote_digest:
                return self.inspector.remote_digest_exists(entry.image, entry.remote_digest)
            return True
        except Exception as e:
            logger.warning(f"Could not verify cached image '{entry.image}', treating it as missing: {e}")
            return False

    def _build(self, artifact: Artifact, tags: Dict[str, str], status: CacheStatus,
               digest: Optional[str], reason: str) -> _Outcome:
        name = artifact.name
        logger.info(f"[{name}] {status.value} ({reason}), building...")
        try:
            built = self.builder.build([artifact], tags)
            produced = next((b for b in built if b.name == name), None)
            if produced is None:
                raise ArtifactBuildError(name, "builder returned no result for this artifact")
        except Exception as e:
            logger.error(f"[{name}] Build failed: {e}")
            return _Outcome(ArtifactResult(
                name=name, status=status, state=ResultState.FAILED,
                digest=digest, reason=reason, error=e,
            ))

        entry = None
        if digest is not None:
            entry = CacheEntry(
                digest=digest,
                image=produced.image,
                image_id=produced.image_id,
                remote_digest=produced.remote_digest,
            )
        logger.info(f"[{name}] Built {produced.image}")
        return _Outcome(
            ArtifactResult(
                name=name, status=status, state=ResultState.BUILT,
                image=produced.image, digest=digest, reason=reason,
            ),
            entry=entry,
        )

    def hash_all(self, artifacts: Sequence[Artifact]) -> List[Tuple[str, Optional[str], Optional[str]]]:
        """(name, digest, error) for every artifact, without building anything."""
        rows = []
        for artifact in artifacts:
            try:
                rows.append((artifact.name, self.artifact_hasher.hash(artifact), None))
            except HashError as e:
                rows.append((artifact.name, None, str(e)))
        return rows
