"""Bridge API package."""
