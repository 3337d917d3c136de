"""Creeper: watches a project and turns coding-session transcripts into configuration improvements."""

__version__ = "0.1.0"
