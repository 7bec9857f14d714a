"""Qala: Sorani Kurdish chat backend with a knowledge-base fast path."""

__version__ = "0.1.0"
