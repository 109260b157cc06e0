# SPDX-FileCopyrightText: 2024 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

import datetime
from collections import deque
from typing import Any

from openai.types.chat import ChatCompletionMessage
from openai.types.chat.chat_completion import ChatCompletion, Choice

DEFAULT_REPLY = "Mocked tutor reply."


def _create_completion(content: str, finish_reason: str = "stop") -> ChatCompletion:
    return ChatCompletion(
        id="fakeid",
        model="gpt-4o",
        object="chat.completion",
        choices=[
            Choice(
                finish_reason=finish_reason,  # type: ignore[arg-type]
                index=0,
                message=ChatCompletionMessage(
                    content=content,
                    role="assistant",
                ),
            )
        ],
        created=int(datetime.datetime.now(tz=datetime.UTC).timestamp()),
    )


class ScriptedCompletions:
    """ Stand-in for AsyncCompletions.create() that replies from a queue.

    Queue a string to have it returned as the completion text, or an
    exception to have it raised.  With an empty queue, every call gets
    DEFAULT_REPLY.  Every call's keyword arguments are recorded in `calls`.
    """
    def __init__(self) -> None:
        self.replies: deque[str | Exception] = deque()
        self.calls: list[dict[str, Any]] = []

    def queue(self, *replies: str | Exception) -> None:
        self.replies.extend(replies)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def last_messages(self) -> list[dict[str, Any]]:
        return list(self.calls[-1]['messages'])

    async def create(self, *_args: Any, **kwargs: Any) -> ChatCompletion:
        self.calls.append({**kwargs, 'messages': list(kwargs['messages'])})
        reply = self.replies.popleft() if self.replies else DEFAULT_REPLY
        if isinstance(reply, Exception):
            raise reply
        return _create_completion(reply)


def mock_async_completion(script: ScriptedCompletions) -> Any:
    """ A replacement for AsyncCompletions.create bound to the given script. """
    async def mock(*args: Any, **kwargs: Any) -> ChatCompletion:
        return await script.create(*args, **kwargs)
    return mock
