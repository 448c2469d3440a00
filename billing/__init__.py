"""Payment confirmation and subscription lifecycle engine."""

__version__ = "0.1.0"
