"""Glass: hybrid local/remote persistence core for a personal AI assistant."""

__version__ = "0.1.0"
