"""Streaming chat-completion client with a mock conversation backend and CORS relay."""

__version__ = "1.0.0"
