import click
import logging
import traceback
import asyncio
from typing import Optional

from .config import Config, RunOptions
from .builder import DockerBuilder
from .cache import CacheController, CacheStore, FileHasher
from .utils import setup_logger, parse_module_levels
from .exceptions import (
    ImgCacheError,
    ConfigurationError,
    BuildError,
)
from . import constants
from . import __version__


def setup_logging(debug: bool, log_levels: str = None, log_file: str = None):
    """Setup logger with debug and module-level configuration"""
    module_levels = parse_module_levels(log_levels) if log_levels else None
    setup_logger(debug=debug, module_levels=module_levels, log_file=log_file)


def handle_errors(func):
    """Decorator to handle common exceptions"""
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ConfigurationError as e:
            _abort(f"Configuration error: {e}")
        except BuildError as e:
            _abort(f"Build error: {e}")
        except ImgCacheError as e:
            _abort(f"An unexpected application error occurred: {e}")
        except FileNotFoundError as e:
            _abort(f"A required file was not found: {e}")
    return wrapper


def _abort(message: str):
    logging.error(message)
    ctx = click.get_current_context()
    if ctx.find_root().obj.get('debug'):
        traceback.print_exc()
    raise click.Abort()


def _cache_path(config_file: Optional[str], cache_file: Optional[str]) -> str:
    if config_file:
        return str(Config(config_file).run_options(cache_file=cache_file).cache_path)
    return str(RunOptions(cache_file=cache_file or constants.DEFAULT_CACHE_FILE).cache_path)


@handle_errors
def do_build(config_file: str, **overrides) -> bool:
    """Execute one build round, returns whether every artifact succeeded"""
    config = Config(config_file)
    options = config.run_options(**overrides)
    builder = DockerBuilder.from_options(options)
    store = CacheStore.from_options(options)
    controller = CacheController(builder, store, options, hasher=FileHasher(root=config.base_dir))

    report = asyncio.run(controller.run(config.artifacts(), config.tags()))

    click.echo(f"{'ARTIFACT':<24} {'CACHE':<10} {'RESULT':<10} {'IMAGE'}")
    for result in report.results:
        click.echo(f"{result.name:<24} {result.status.value:<10} {result.state.value:<10} {result.image or '-'}")
    for result in report.failed:
        logging.error(f"[{result.name}] {result.error}")
    return report.ok


@handle_errors
def do_hash(config_file: str):
    """Print the digest of every artifact without building"""
    config = Config(config_file)
    options = config.run_options()
    builder = DockerBuilder.from_options(options)
    controller = CacheController(builder, CacheStore.from_options(options), options,
                                 hasher=FileHasher(root=config.base_dir))
    failed = False
    for name, digest, error in controller.hash_all(config.artifacts()):
        if digest is None:
            failed = True
            logging.error(f"[{name}] {error}")
            click.echo(f"{name:<24} -")
        else:
            click.echo(f"{name:<24} {digest}")
    return not failed


@handle_errors
def do_cache_show(config_file: Optional[str], cache_file: Optional[str]):
    store = CacheStore(_cache_path(config_file, cache_file))
    entries = store.load()
    if not entries:
        logging.info(f"No cache entries in {store.path}.")
        return
    click.echo(f"{'ARTIFACT':<24} {'DIGEST':<20} {'UPDATED':<20} {'IMAGE'}")
    for name in sorted(entries):
        entry = entries[name]
        digest = entry.digest.replace(constants.DIGEST_PREFIX, "")[:16]
        updated = entry.updated_at.strftime('%Y-%m-%d %H:%M:%S')
        click.echo(f"{name:<24} {digest:<20} {updated:<20} {entry.image}")


@handle_errors
def do_cache_clear(config_file: Optional[str], cache_file: Optional[str]) -> bool:
    return CacheStore(_cache_path(config_file, cache_file)).clear()


@handle_errors
def do_prune():
    DockerBuilder().prune()
    logging.info("Intermediate build state pruned.")


@click.group()
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.option('-l', '--log-levels', help="Comma-separated per-module log levels (e.g., 'store=DEBUG,ctl=INFO')")
@click.option('-f', '--log-file', help='Path to log file')
@click.version_option(version=__version__, prog_name='imgcache')
@click.pass_context
def cli(ctx, debug, log_levels, log_file):
    """imgcache - Rebuild only the container images whose inputs changed

    \b
    Examples:
      imgc build project.yml            Build with the artifact cache
      imgc build project.yml --force    Rebuild everything, refresh the cache
      imgc cache show project.yml       List cached artifacts
    """
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug
    setup_logging(debug, log_levels, log_file)


@cli.command()
@click.argument('config_file')
@click.option('--force', is_flag=True, help='Rebuild every artifact regardless of the cache')
@click.option('--no-cache', 'no_cache', is_flag=True, help='Disable the artifact cache for this run')
@click.option('--no-prune', is_flag=True, help='Never prune intermediate build state')
@click.option('--cache-file', help=f'Cache file location (default: {constants.DEFAULT_CACHE_FILE})')
@click.option('--push', is_flag=True, help='Push built images and record their registry digest')
@click.option('--verify-remote', is_flag=True, help='Also check the registry before reusing an image')
@click.option('-j', '--concurrency', type=int, help='Number of artifacts processed in parallel')
@click.option('--fail-fast', is_flag=True, help='Cancel remaining artifacts after the first failure')
@click.option('--label', 'custom_labels', multiple=True, help='Extra image label, key=value (repeatable)')
@click.option('-n', '--namespace', help='Namespace label attached to built images')
@click.option('-p', '--profile', 'profiles', multiple=True, help='Active profile (repeatable)')
@click.pass_context
def build(ctx, config_file, force, no_cache, no_prune, cache_file, push, verify_remote,
          concurrency, fail_fast, custom_labels, namespace, profiles):
    """Build the project's artifacts, reusing cached images where possible"""
    # unset flags fall back to the project file's `options`
    ok = do_build(
        config_file,
        force=force or None,
        cache_artifacts=False if no_cache else None,
        no_prune=no_prune or None,
        cache_file=cache_file,
        push=push or None,
        verify_remote=verify_remote or None,
        concurrency=concurrency,
        fail_fast=fail_fast or None,
        custom_labels=list(custom_labels) or None,
        namespace=namespace,
        profiles=list(profiles) or None,
    )
    if not ok:
        ctx.exit(1)


@cli.command(name='hash')
@click.argument('config_file')
@click.pass_context
def hash_cmd(ctx, config_file):
    """Print the digest of every artifact

    \b
    Examples:
      imgc hash project.yml
    """
    if not do_hash(config_file):
        ctx.exit(1)


@cli.command()
@click.pass_context
def prune(ctx):
    """Prune intermediate build state of the Docker builder"""
    do_prune()


@cli.group()
def cache():
    """Inspect or reset the artifact cache"""


@cache.command(name='show')
@click.argument('config_file', required=False)
@click.option('--cache-file', help='Cache file location')
def cache_show(config_file, cache_file):
    """List cached artifacts"""
    do_cache_show(config_file, cache_file)


@cache.command(name='clear')
@click.argument('config_file', required=False)
@click.option('--cache-file', help='Cache file location')
@click.pass_context
def cache_clear(ctx, config_file, cache_file):
    """Delete the cache file"""
    if not do_cache_clear(config_file, cache_file):
        ctx.exit(1)
