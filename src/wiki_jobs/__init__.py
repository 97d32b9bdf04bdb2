"""Job queue worker and batch orchestration for wiki content updates."""

__version__ = "0.1.0"
