"""
imgcache Builder Module

- DockerBuilder: Builder and image inspector backed by the Docker daemon

Usage:
    from imgcache.builder import DockerBuilder

    builder = DockerBuilder.from_options(options)
    deps = builder.dependencies_for(artifact)
"""

from .docker import DockerBuilder, repository_of

__all__ = [
    'DockerBuilder',
    'repository_of',
]
