"""Tool call controller: reconciles agent tool calls to a single terminal outcome."""

__version__ = "0.1.0"
