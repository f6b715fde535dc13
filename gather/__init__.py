"""chrome-gather: headless Chromium page capture with HAR synthesis."""

__version__ = "1.0.0"
