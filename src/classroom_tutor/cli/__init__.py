"""
CLI module for classroom-tutor.

Provides the ``classroom-tutor`` command: the HTTP service, a gate check,
an interactive demo chat and config helpers.
"""

from classroom_tutor.cli.main import cli

__all__ = ["cli"]
