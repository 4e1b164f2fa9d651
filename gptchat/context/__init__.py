"""
Conversation state for gpt-chat.

This package provides the token-budgeted persona, its counted message
sequences and persona file persistence.
"""
