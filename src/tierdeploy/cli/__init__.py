"""Command-line interface."""

from tierdeploy.cli.main import cli, main

__all__ = ['cli', 'main']
