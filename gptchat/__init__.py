"""
gpt-chat: a client for chat-completion APIs with token-budgeted conversations.

This package provides a streaming chat-completion client with retry, a
conversation state ("persona") that keeps its history within the model's
context window, and an interactive terminal shell built on both.
"""

__version__ = "0.1.0"
