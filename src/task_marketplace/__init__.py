"""Task Marketplace Service - tasks, proposals, assignment and ratings."""

__version__ = "0.1.0"
