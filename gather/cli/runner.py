"""Capture runner with logging setup and exit code mapping.

This module turns a resolved configuration into one capture run (or one
replay of a dumped event log) and maps its outcome onto process exit codes.
"""

import asyncio
import json
import logging
import sys
from enum import IntEnum
from pathlib import Path
from typing import Optional, Tuple

from .config import GatherConfiguration
from ..capture.browser_factory import BrowserFactory
from ..capture.errors import CaptureError
from ..capture.page_session import capture_url
from ..har.models import HarDocument
from ..har.synthesizer import synthesize_with_fallback
from ..models.capture import CaptureResult, CaptureStatus, EventLog, HarMode, OutputTarget

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s"


class ExitCode(IntEnum):
    """CLI exit codes."""
    SUCCESS = 0           # Capture completed, all requested outputs written
    CAPTURE_ERROR = 1     # Navigation failed, page crashed or capture sequence failed
    CONFIG_ERROR = 3      # Configuration or input error
    TIMEOUT_ERROR = 5     # Navigation timed out


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Configure the root logger once for the CLI process.

    Args:
        level: Root log level name
        log_file: Optional file that receives the same records
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.setLevel(level.upper())


def exit_code_for(result: CaptureResult) -> ExitCode:
    """Map a capture result onto an exit code."""
    if result.capture_status == CaptureStatus.SUCCESS:
        return ExitCode.SUCCESS
    if result.capture_status == CaptureStatus.TIMEOUT:
        return ExitCode.TIMEOUT_ERROR
    return ExitCode.CAPTURE_ERROR


class CaptureRunner:
    """Runs one capture for the CLI."""

    def __init__(self, config: GatherConfiguration):
        self.config = config
        self.result: Optional[CaptureResult] = None

    async def run(self, url: str) -> ExitCode:
        """Launch the browser, capture the URL and map the outcome.

        Args:
            url: URL to capture

        Returns:
            Exit code for the run
        """
        session_config = self.config.to_session_config()
        logger.debug(f"Capturing {url} with {session_config!r}")

        try:
            async with BrowserFactory(self.config.to_browser_config()) as factory:
                self.result = await capture_url(factory, url, session_config)
        except CaptureError as e:
            logger.error(f"Capture failed: {e}")
            return ExitCode.CAPTURE_ERROR
        except Exception as e:
            logger.error(f"Browser error: {e}")
            return ExitCode.CAPTURE_ERROR

        summary = self.result.export_summary()
        logger.debug(f"Capture summary: {json.dumps(summary)}")
        return exit_code_for(self.result)

    def run_sync(self, url: str) -> ExitCode:
        return asyncio.run(self.run(url))


def replay_events(events_file: Path, url: str, har: OutputTarget) -> Tuple[HarDocument, HarMode]:
    """Rebuild a HAR document from a dumped event log.

    Args:
        events_file: JSON array of ``{method, params}`` records
        url: Target URL of the original capture
        har: Where to write the HAR (not written when disabled)

    Returns:
        Tuple of (document, mode used)

    Raises:
        ValueError: If the file is not a valid event log
        SynthesisError: If the log cannot be turned into a HAR at all
    """
    try:
        records = json.loads(events_file.read_text(encoding='utf-8'))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in event log {events_file}: {e}")

    if not isinstance(records, list):
        raise ValueError(f"Event log {events_file} must contain a JSON array")

    try:
        log = EventLog.from_list(records)
    except (KeyError, TypeError, AttributeError, ValueError) as e:
        raise ValueError(f"Malformed event record in {events_file}: {e}")

    logger.info(f"Replaying {len(log)} events from {events_file}")
    document, mode = synthesize_with_fallback(url, log)

    if har:
        har.path.write_text(document.to_json(), encoding='utf-8')
        logger.info(f"HAR saved: {har.path} ({len(document.entries)} entries, {mode.value})")

    return document, mode
