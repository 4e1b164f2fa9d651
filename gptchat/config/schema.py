"""
Configuration schema definitions for gpt-chat.

This module defines the Pydantic models for configuration validation: model
and context-window settings, the retry policy of the completion client and
the connection settings.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from gptchat.constants import (
    API_KEY_ENV_VAR,
    DEFAULT_BASE_URL,
    DEFAULT_CONTEXT_WINDOW,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MODEL,
    DEFAULT_RESERVED_TOKENS,
    DEFAULT_RETRY_EXPONENTIAL_BASE,
    DEFAULT_RETRY_INITIAL_DELAY,
    DEFAULT_RETRY_JITTER,
)
from gptchat.exceptions import ValidationError


class ModelConfig(BaseModel):
    """
    Configuration for the chat model and its context window.

    Parameters
    ----------
    name : str, default="gpt-3.5-turbo"
        The name of the model to use.
    temperature : float | None, optional
        Sampling temperature between 0.0 and 2.0; unset uses the API default.
    context_window : int, default=4096
        Context window size of the model in tokens.
    reserved_tokens : int, default=128
        Tokens kept free in the context window for the reply.

    Examples
    --------
    >>> model = ModelConfig(name="gpt-4o", context_window=128_000)
    >>> model.max_context_token_count
    127872
    """

    name: str = Field(default=DEFAULT_MODEL, description="Model name")
    temperature: float | None = Field(
        default=None,
        description="Sampling temperature (0.0-2.0)",
    )
    context_window: int = Field(
        default=DEFAULT_CONTEXT_WINDOW,
        ge=1,
        description="Context window size in tokens",
    )
    reserved_tokens: int = Field(
        default=DEFAULT_RESERVED_TOKENS,
        ge=0,
        description="Tokens reserved for the reply",
    )

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float | None) -> float | None:
        """
        Validate temperature is within acceptable range.

        Raises
        ------
        ValidationError
            If temperature is outside the valid range.
        """
        if v is not None and not 0.0 <= v <= 2.0:
            raise ValidationError(
                f"Temperature must be between 0.0 and 2.0, got {v}",
                field="temperature",
            )
        return v

    @model_validator(mode="after")
    def validate_budget(self) -> ModelConfig:
        if self.reserved_tokens >= self.context_window:
            raise ValidationError(
                "reserved_tokens must be smaller than context_window",
                field="reserved_tokens",
            )
        return self

    @property
    def max_context_token_count(self) -> int:
        """Token budget for persona, history and instructions."""
        return self.context_window - self.reserved_tokens


class RetryConfig(BaseModel):
    """
    Retry policy of the completion client.

    Parameters
    ----------
    max_retries : int | None, default=5
        Retries after the first attempt; ``None`` retries without limit.
    initial_delay : float, default=0.5
        Backoff scale in seconds.
    exponential_base : float, default=2.0
        Backoff growth factor.
    jitter : float, default=0.5
        Maximum random fraction added to each delay.
    """

    max_retries: int | None = Field(
        default=DEFAULT_MAX_RETRIES,
        ge=0,
        description="Maximum retries (None = unlimited)",
    )
    initial_delay: float = Field(
        default=DEFAULT_RETRY_INITIAL_DELAY,
        ge=0.0,
        description="Initial backoff delay in seconds",
    )
    exponential_base: float = Field(
        default=DEFAULT_RETRY_EXPONENTIAL_BASE,
        ge=1.0,
        description="Backoff growth factor",
    )
    jitter: float = Field(
        default=DEFAULT_RETRY_JITTER,
        ge=0.0,
        description="Random jitter fraction",
    )


class Configuration(BaseModel):
    """
    Main configuration model for gpt-chat.

    Parameters
    ----------
    model : ModelConfig, optional
        Model configuration. Uses defaults if not provided.
    retry : RetryConfig, optional
        Retry policy. Uses defaults if not provided.
    base_url : str, default="https://api.openai.com"
        Root URL of the chat-completion API.
    timeout : float | None, optional
        Client-side request timeout in seconds; unset means no timeout.
    persona_file : Path | None, optional
        Persona text or snapshot file loaded at startup.
    cwd : Path, optional
        Current working directory. Defaults to current directory.
    debug : bool, default=False
        Enable debug logging.

    Examples
    --------
    >>> config = Configuration(
    ...     model=ModelConfig(name="gpt-4o"),
    ...     retry=RetryConfig(max_retries=2),
    ... )
    """

    model: ModelConfig = Field(
        default_factory=ModelConfig,
        description="Model configuration",
    )
    retry: RetryConfig = Field(
        default_factory=RetryConfig,
        description="Retry policy",
    )
    base_url: str = Field(
        default=DEFAULT_BASE_URL,
        description="API base URL",
    )
    timeout: float | None = Field(
        default=None,
        gt=0.0,
        description="Request timeout in seconds",
    )
    persona_file: Path | None = Field(
        default=None,
        description="Persona definition file",
    )
    cwd: Path = Field(
        default_factory=Path.cwd,
        description="Current working directory",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    @property
    def api_key(self) -> str | None:
        """
        Get the API key from environment variables.

        Returns
        -------
        str | None
            The API key if set and non-blank, None otherwise.
        """
        key: str = os.environ.get(API_KEY_ENV_VAR, "").strip()
        return key or None

    @property
    def model_name(self) -> str:
        return self.model.name

    @model_name.setter
    def model_name(self, value: str) -> None:
        self.model.name = value

    def request_params(self) -> dict[str, Any]:
        """
        Request options derived from the model configuration.

        Returns
        -------
        dict[str, Any]
            ``model`` and, when configured, ``temperature``.
        """
        params: dict[str, Any] = {"model": self.model.name}
        if self.model.temperature is not None:
            params["temperature"] = self.model.temperature
        return params

    def validate(self) -> list[str]:
        """
        Validate the configuration and return any errors.

        A missing API key is not an error here: the shell asks for it
        interactively.

        Returns
        -------
        list[str]
            List of error messages. Empty list if configuration is valid.
        """
        errors: list[str] = []

        if not self.cwd.exists():
            errors.append(f"Working directory does not exist: {self.cwd}")

        if self.persona_file is not None and not self.persona_file.is_file():
            errors.append(f"Persona file does not exist: {self.persona_file}")

        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")
