"""Relationship graph core: follows, connections, collaborations and abuse controls."""

__version__ = "0.1.0"
