"""CLI module for chrome-gather.

This package provides the command-line interface: configuration loading,
logging setup, the capture runner and exit code mapping.
"""

from .runner import (
    # Exit codes
    ExitCode,

    # Runner
    CaptureRunner,
    configure_logging,
    replay_events,
)
from .config import GatherConfiguration, load_configuration

__all__ = [
    # Exit codes
    'ExitCode',

    # Runner
    'CaptureRunner',
    'configure_logging',
    'replay_events',

    # Configuration
    'GatherConfiguration',
    'load_configuration',
]
