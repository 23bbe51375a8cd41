"""URMAN Lead Bot: lead qualification assistant with knowledge retrieval."""

__version__ = "1.0.0"
