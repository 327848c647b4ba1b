"""gemini-wrapper: HTTP bridge to the Gemini CLI."""

__version__ = "0.1.0"
