"""Location-aware delivery fee caching and recalculation engine."""

__version__ = "0.1.0"
