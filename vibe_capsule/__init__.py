"""Provider-agnostic streaming summaries."""

__version__ = "0.1.0"
