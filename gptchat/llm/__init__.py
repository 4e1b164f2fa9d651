"""
Chat-completion client and wire models for gpt-chat.

This package provides the request client, its retry strategy, the
server-sent event decoder and the request/response models.
"""
