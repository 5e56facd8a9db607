"""Discovery and attendance retrieval for ZKTeco-compatible terminals."""

__version__ = "0.1.0"
