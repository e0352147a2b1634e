"""Runtime coordination core for agent workers."""

__version__ = "0.1.0"
