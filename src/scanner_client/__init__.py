"""Client-side orchestration and trend classification for the EMA scanner dashboard."""

__version__ = "0.1.0"
