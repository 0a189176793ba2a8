"""PDP Coach session execution and analysis engine."""

__version__ = "0.1.0"
