# SPDX-FileCopyrightText: 2023 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

from typing import Any, TypeAlias

import openai
from flask import current_app

OpenAIChatMessage: TypeAlias = openai.types.chat.ChatCompletionMessageParam

_GENERIC_ERROR = "Error ({error_type}).  Something went wrong while contacting the tutor.  The error has been logged.  For now, please try again."


class OracleUnavailable(Exception):
    """The chat completion endpoint could not produce a response.

    The exception message is suitable for showing to the user.
    """


def user_message_for(e: openai.APIError) -> str:
    """ A message for the student or teacher explaining an API failure. """
    match e:
        case openai.APITimeoutError():
            return "Error (APITimeoutError).  The tutor timed out producing a response.  Please try again."
        case openai.RateLimitError() if "exceeded your current quota" in str(e):
            return "Error (RateLimitError).  The API key for this site has exceeded its current quota.  Please let your teacher know."
        case openai.RateLimitError():
            return "Error (RateLimitError).  The tutor is receiving too many requests right now.  Please try again in one minute."
        case openai.AuthenticationError():
            return "Error (AuthenticationError).  The API key configured for this site is invalid."
        case openai.BadRequestError() if "maximum context length" in str(e):
            return "Error (BadRequestError).  This conversation is too long for the model to process."
        case openai.BadRequestError() | openai.APIConnectionError():
            return _GENERIC_ERROR.format(error_type=type(e).__name__)
        case _:
            return _GENERIC_ERROR.format(error_type='APIError')


class OpenAIClient:
    """Async client for OpenAI or any OpenAI-compatible endpoint."""

    def __init__(self, model: str, api_key: str, *, base_url: str | None = None):
        client_args: dict[str, Any] = {'api_key': api_key}
        if base_url:
            client_args['base_url'] = base_url
        self._client = openai.AsyncOpenAI(**client_args)
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    async def get_completion(self, messages: list[OpenAIChatMessage], completion_args: dict[str, Any]) -> tuple[dict[str, Any], str]:
        """Request one chat completion.

        Returns the raw response (as a dict) and the response text, stripped
        and possibly empty.

        Raises OracleUnavailable, with a user-facing message, if the request
        fails or the response has no choices.
        """
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                **completion_args
            )
        except openai.APIError as e:
            current_app.logger.error(f"OpenAI {type(e).__name__} (model {self._model}): {e}")
            raise OracleUnavailable(user_message_for(e)) from e

        if not response.choices:
            current_app.logger.error(f"OpenAI response contained no choices: {response.id}")
            raise OracleUnavailable("Error (EmptyResponse).  The tutor returned no response.  Please try again.")

        choice = response.choices[0]
        if choice.finish_reason == "length":  # max_completion_tokens reached
            current_app.logger.warning(f"Completion truncated at maximum length (model {self._model}).")

        return response.model_dump(), (choice.message.content or "").strip()
