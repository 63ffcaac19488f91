"""Client for incremental content synchronization APIs."""

__version__ = "0.1.0"
