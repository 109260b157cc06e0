# SPDX-FileCopyrightText: 2023 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

import asyncio

import httpx
import openai
import pytest
from flask import Flask

from jumpahead.llm import LLM, ChatMessage, get_llm, with_llm
from jumpahead.openai_client import OracleUnavailable
from jumpahead.testing.mocks import DEFAULT_REPLY, ScriptedCompletions

_request = httpx.Request('POST', 'https://api.openai.com/v1/chat/completions')


def _status_error(cls: type[openai.APIStatusError], status: int, message: str) -> openai.APIStatusError:
    return cls(message, response=httpx.Response(status, request=_request), body=None)


def test_get_llm_from_config(app: Flask) -> None:
    with app.app_context():
        llm = get_llm()
        assert llm.model == 'gpt-4o'
        assert llm.api_key == 'invalid'
        assert llm.endpoint is None


def test_with_llm_injects(app: Flask) -> None:
    @with_llm
    def view(llm: LLM) -> LLM:
        return llm

    with app.app_context():
        assert isinstance(view(), LLM)  # type: ignore[call-arg]


def test_make_args() -> None:
    llm = LLM(model='gpt-4o', api_key='invalid', default_params={'temperature': 0.1})
    args = llm.make_args({'max_completion_tokens': 10})
    assert args == {'temperature': 0.1, 'max_completion_tokens': 10}
    assert llm.make_args(None)['max_completion_tokens'] == 1000


def test_get_completion(app: Flask, oracle: ScriptedCompletions) -> None:
    oracle.queue("  Hello there.  ")
    llm = LLM(model='gpt-4o', api_key='invalid')

    with app.app_context():
        response, text = asyncio.run(llm.get_completion(messages=[{'role': 'user', 'content': "Hi"}], extra_args={'temperature': 0.2}))

    assert text == "Hello there."
    assert response['id'] == 'fakeid'
    assert oracle.calls[0]['model'] == 'gpt-4o'
    assert oracle.calls[0]['temperature'] == 0.2


def test_calls_record_messages_as_sent(app: Flask, oracle: ScriptedCompletions) -> None:
    llm = LLM(model='gpt-4o', api_key='invalid')
    messages: list[ChatMessage] = [{'role': 'user', 'content': "one"}]

    with app.app_context():
        asyncio.run(llm.get_completion(messages=messages))
        messages.append({'role': 'assistant', 'content': DEFAULT_REPLY})
        asyncio.run(llm.get_completion(messages=messages))

    assert [msg['content'] for msg in oracle.calls[0]['messages']] == ["one"]
    assert [msg['content'] for msg in oracle.calls[1]['messages']] == ["one", DEFAULT_REPLY]


def test_default_reply(app: Flask, oracle: ScriptedCompletions) -> None:
    with app.app_context():
        _response, text = asyncio.run(LLM(model='gpt-4o', api_key='invalid').get_completion(messages=[]))
    assert text == DEFAULT_REPLY


@pytest.mark.parametrize(("error", "expected"), [
    (openai.APITimeoutError(request=_request), "timed out"),
    (openai.APIConnectionError(request=_request), "APIConnectionError"),
    (_status_error(openai.RateLimitError, 429, "You exceeded your current quota"), "exceeded its current quota"),
    (_status_error(openai.RateLimitError, 429, "Slow down"), "too many requests"),
    (_status_error(openai.AuthenticationError, 401, "Incorrect API key"), "API key configured for this site is invalid"),
    (_status_error(openai.BadRequestError, 400, "This model's maximum context length is 128000 tokens"), "too long"),
    (_status_error(openai.BadRequestError, 400, "Something odd"), "BadRequestError"),
    (_status_error(openai.InternalServerError, 500, "Oops"), "APIError"),
])
def test_oracle_errors(app: Flask, oracle: ScriptedCompletions, error: Exception, expected: str) -> None:
    oracle.queue(error)
    llm = LLM(model='gpt-4o', api_key='invalid')

    with app.app_context(), pytest.raises(OracleUnavailable, match=expected):
        asyncio.run(llm.get_completion(messages=[{'role': 'user', 'content': "Hi"}]))

