"""Hookrelay - signed, retried webhook delivery."""

__version__ = "0.1.0"
