"""Browser factory for launching Chromium with a remote debugging port.

This module provides the BrowserFactory class that handles the browser
lifecycle for a single capture: launching Chromium with the debugging port and
sandbox flags, opening a page with the configured viewport, and attaching a
protocol session to it.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 1200
DEFAULT_HEIGHT = 800
DEFAULT_PORT = 9222


def running_as_root() -> bool:
    """Chromium refuses to start sandboxed as root."""
    return os.environ.get("USER") == "root"


class BrowserConfig:
    """Configuration for browser launch and page setup."""

    def __init__(
        self,
        width: int = DEFAULT_WIDTH,
        height: int = DEFAULT_HEIGHT,
        port: int = DEFAULT_PORT,
        headless: bool = True,
        no_sandbox: Optional[bool] = None,
        extra_args: Optional[List[str]] = None,
    ):
        """Initialize browser configuration.

        Args:
            width: Viewport width in pixels
            height: Viewport height in pixels
            port: Remote debugging port
            headless: Run browser in headless mode
            no_sandbox: Disable the sandbox (auto-detected from the user if None)
            extra_args: Additional Chromium command line switches
        """
        self.width = width
        self.height = height
        self.port = port
        self.headless = headless
        self.no_sandbox = running_as_root() if no_sandbox is None else no_sandbox
        self.extra_args = list(extra_args or [])

    @property
    def viewport(self) -> Dict[str, int]:
        return {'width': self.width, 'height': self.height}

    def to_launch_args(self) -> List[str]:
        """Chromium command line switches."""
        args = [f"--remote-debugging-port={self.port}"]
        if self.no_sandbox:
            args.append("--no-sandbox")
        args.extend(self.extra_args)
        return args

    def to_browser_options(self) -> Dict[str, Any]:
        """Convert to Playwright browser launch options."""
        return {
            'headless': self.headless,
            'args': self.to_launch_args(),
        }

    def to_context_options(self) -> Dict[str, Any]:
        """Convert to Playwright browser context options."""
        return {'viewport': self.viewport}

    def __repr__(self) -> str:
        return (
            f"BrowserConfig(viewport={self.width}x{self.height}, port={self.port}, "
            f"headless={self.headless}, no_sandbox={self.no_sandbox})"
        )


class BrowserFactory:
    """Owns the Playwright driver and one Chromium instance."""

    def __init__(self, config: Optional[BrowserConfig] = None):
        self.config = config or BrowserConfig()
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None

    async def start(self) -> None:
        """Start Playwright and launch Chromium."""
        if self.playwright is not None:
            logger.warning("Browser factory already started")
            return

        logger.info(f"Starting Chromium ({self.config!r})")

        try:
            self.playwright = await async_playwright().start()
            self.browser = await self.playwright.chromium.launch(**self.config.to_browser_options())
            logger.debug(f"Browser launched: {self.browser.version}")
        except Exception as e:
            logger.error(f"Failed to start browser: {e}")
            await self.stop()
            raise

    async def stop(self) -> None:
        """Close the browser and stop the driver."""
        try:
            if self.browser:
                await self.browser.close()
                self.browser = None

            if self.playwright:
                await self.playwright.stop()
                self.playwright = None

            logger.debug("Browser factory stopped")

        except Exception as e:
            logger.error(f"Error stopping browser factory: {e}")

    @asynccontextmanager
    async def context(self) -> AsyncGenerator[BrowserContext, None]:
        """Context manager for a browser context with the configured viewport."""
        if not self.browser:
            raise RuntimeError("Browser factory not started. Call start() first.")

        context = await self.browser.new_context(**self.config.to_context_options())
        try:
            yield context
        finally:
            await context.close()

    @asynccontextmanager
    async def page(self) -> AsyncGenerator[Page, None]:
        """Context manager for a single page.

        Yields:
            Page instance that will be automatically closed
        """
        async with self.context() as context:
            page = await context.new_page()
            try:
                yield page
            finally:
                await page.close()

    @property
    def is_running(self) -> bool:
        return self.browser is not None and self.browser.is_connected()

    async def __aenter__(self) -> "BrowserFactory":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    def __repr__(self) -> str:
        return f"BrowserFactory({self.config!r}, running={self.is_running})"
