"""
Command Line Interface for ibtools.
"""

from ibtools.cli.app import app
from ibtools.cli.ib_commands import ib_app

__all__ = ["app", "ib_app"]
