"""A priority message queue on Redis lists, with consumer threads, dead letters and metrics."""

__version__ = "0.1.0"

__all__ = ["config", "consumer", "errors", "examples", "message", "monitor", "priority", "queue"]