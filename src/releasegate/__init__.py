"""releasegate - verify a published container image before promotion."""

__version__ = "0.1.0"
