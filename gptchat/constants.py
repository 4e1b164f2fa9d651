"""
Application-wide constants for gpt-chat.

This module defines constants used throughout the application to ensure
consistency and maintainability.
"""

# Configuration file names
CONFIG_FILE_NAME: str = "config.toml"

# Application directories
APP_NAME: str = "gpt-chat"
CONFIG_DIR_NAME: str = ".gpt-chat"

# API endpoint
DEFAULT_BASE_URL: str = "https://api.openai.com"
CHAT_COMPLETIONS_PATH: str = "/v1/chat/completions"
API_KEY_ENV_VAR: str = "OPENAI_API_KEY"

# Model defaults
DEFAULT_MODEL: str = "gpt-3.5-turbo"
DEFAULT_CONTEXT_WINDOW: int = 4096
DEFAULT_RESERVED_TOKENS: int = 128
DEFAULT_MAX_CONTEXT_TOKEN_COUNT: int = DEFAULT_CONTEXT_WINDOW - DEFAULT_RESERVED_TOKENS

# Retry defaults (delays in seconds)
DEFAULT_MAX_RETRIES: int = 5
DEFAULT_RETRY_INITIAL_DELAY: float = 0.5
DEFAULT_RETRY_EXPONENTIAL_BASE: float = 2.0
DEFAULT_RETRY_JITTER: float = 0.5

# Token estimation
DEFAULT_TOKENIZER_ENCODING: str = "cl100k_base"
DEFAULT_CHARS_PER_TOKEN: int = 4
MIN_TOKEN_COUNT: int = 1

# File operations
DEFAULT_ENCODING: str = "utf-8"

DEFAULT_PERSONA: str = (
    "You are a helpful assistant chatting with the user in a terminal. "
    "Answer concisely and use plain text unless the user asks otherwise."
)
