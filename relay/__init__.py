"""Lexicon relay: webhook ingestion and fan-out service."""

__version__ = "1.0.0"
