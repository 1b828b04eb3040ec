"""Conversation orchestration service for slow, incrementally-rendering chat drivers."""

__version__ = "0.1.0"
