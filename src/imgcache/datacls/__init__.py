from .artifacts import Artifact, BuiltArtifact, ArtifactResult, RoundReport

__all__ = [
    'Artifact',
    'BuiltArtifact',
    'ArtifactResult',
    'RoundReport',
]
