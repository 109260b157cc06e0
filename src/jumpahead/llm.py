# SPDX-FileCopyrightText: 2023 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, ParamSpec, TypeAlias, TypeVar

from flask import current_app

from .openai_client import OpenAIChatMessage, OpenAIClient

ChatMessage: TypeAlias = OpenAIChatMessage

DEFAULT_COMPLETION_ARGS: dict[str, Any] = {
    'temperature': 0.7,
    'max_completion_tokens': 1000,
}


@dataclass
class LLM:
    """Access to a chat completion model with lazy client initialization.

    Constructed explicitly (see get_llm()) and passed to whatever needs it;
    the API key comes from the application configuration only.
    """
    model: str
    api_key: str
    endpoint: str | None = None  # if None, use the default OpenAI endpoint
    default_params: dict[str, Any] | None = None
    _client: OpenAIClient | None = field(default=None, init=False, repr=False)  # Instantiated only when needed

    def make_args(self, extra_args: dict[str, Any] | None) -> dict[str, Any]:
        completion_args = DEFAULT_COMPLETION_ARGS.copy()
        if self.default_params:
            completion_args |= self.default_params
        if extra_args:
            completion_args |= extra_args

        return completion_args

    async def get_completion(self, *, messages: list[ChatMessage], extra_args: dict[str, Any] | None = None) -> tuple[dict[str, Any], str]:
        """Get a completion from the language model.

        Args:
            messages: A list of chat messages in OpenAI format
            extra_args: A dictionary of additional named arguments to pass to the API

        The client is lazily instantiated on first use.

        Delegates to OpenAIClient.get_completion() (see openai_client.py),
        which raises OracleUnavailable on any API failure.
        """
        if self._client is None:
            self._client = OpenAIClient(self.model, self.api_key, base_url=self.endpoint)

        completion_args = self.make_args(extra_args)
        return await self._client.get_completion(messages, completion_args)


def get_llm() -> LLM:
    """Build an LLM object from the current application's configuration."""
    config = current_app.config
    return LLM(
        model=config['OPENAI_MODEL'],
        api_key=config['OPENAI_API_KEY'],
        endpoint=config.get('OPENAI_BASE_URL'),
    )


# For decorator type hints
P = ParamSpec('P')
R = TypeVar('R')


def with_llm(f: Callable[P, R]) -> Callable[P, R]:
    '''Decorate a view function that requires an LLM.

    Assigns an 'llm' named argument, built from the application configuration.
    '''
    @wraps(f)
    def decorated_function(*args: P.args, **kwargs: P.kwargs) -> R:
        kwargs['llm'] = get_llm()
        return f(*args, **kwargs)
    return decorated_function
