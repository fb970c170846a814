"""Behavioral profile synthesis engine."""

__version__ = "0.1.0"
