"""Top-N video catalog across YouTube channels."""

__version__ = "0.1.0"
