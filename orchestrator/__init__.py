"""Indexing Orchestrator - keeps code and documentation indexes in sync with their sources."""

__version__ = "0.1.0"
