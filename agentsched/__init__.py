"""agentsched — recurring agent execution scheduler."""

__version__ = "0.1.0"
