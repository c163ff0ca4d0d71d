import logging

from ..protocols import BuilderProtocol

logger = logging.getLogger(__name__)


class RetentionPolicy:
    """Decides whether intermediate build state is reclaimed after a round.

    An active cache relies on the layers a prune would discard, so pruning
    only runs when neither ``no_prune`` nor ``cache_artifacts`` is set.
    """

    def __init__(self, no_prune: bool, cache_artifacts: bool):
        self.no_prune = no_prune
        self.cache_artifacts = cache_artifacts

    @classmethod
    def from_options(cls, options) -> "RetentionPolicy":
        return cls(no_prune=options.no_prune, cache_artifacts=options.cache_artifacts)

    def should_prune(self) -> bool:
        return not self.no_prune and not self.cache_artifacts

    def apply(self, builder: BuilderProtocol) -> bool:
        """Prune through ``builder`` if the policy allows it. Returns whether a prune ran."""
        if not self.should_prune():
            reason = "--no-prune" if self.no_prune else "artifact caching is enabled"
            logger.debug(f"Skipping prune: {reason}")
            return False

        logger.info("Pruning intermediate build state...")
        try:
            builder.prune()
        except Exception as e:
            logger.warning(f"Prune failed: {e}")
            return False
        return True
