"""
imgcache - Main entry point

Delegates to cli.py so `python -m imgcache` behaves like `imgc`.
"""

from .cli import cli

if __name__ == "__main__":
    cli()
