# SPDX-FileCopyrightText: 2025 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

import asyncio
from dataclasses import asdict
from typing import Any

from flask import Blueprint, abort, request

from jumpahead.auth import get_auth, student_required
from jumpahead.llm import LLM, with_llm

from .data import Turn
from .evaluation import Evaluation
from .session import (
    AlreadyCompleted,
    EmptyInput,
    SessionController,
    drop_live_state,
    get_live_state,
    store_live_state,
)

bp = Blueprint('learning', __name__, url_prefix='/learn')


@bp.before_request
@student_required
def before_request() -> None:
    """Apply decorators to protect all learning blueprint endpoints."""


async def _open_session(llm: LLM, module_id: int) -> SessionController:
    """ Attach to the session already live in this process, or load one.

    Each request runs everything in a single asyncio.run(), as the LLM's
    client must not be shared across event loops.
    """
    user_id = get_auth().user_id
    assert user_id is not None  # guaranteed by student_required

    state = get_live_state(user_id, module_id)
    controller = SessionController(llm, user_id, module_id, state=state)
    if state is None:
        state = await controller.load_session()
        store_live_state(state)
    return controller


def _session_response(controller: SessionController, **extra: Any) -> dict[str, Any]:
    return {
        'phase': controller.phase,
        'session': controller.state.to_dict(),
        'notifications': [asdict(notice) for notice in controller.notices],
    } | extra


@bp.route("/<int:module_id>")
@with_llm
def session_view(module_id: int, llm: LLM) -> dict[str, Any]:
    controller = asyncio.run(_open_session(llm, module_id))
    return _session_response(controller)


@bp.route("/<int:module_id>/message", methods=['POST'])
@with_llm
def send_message(module_id: int, llm: LLM) -> dict[str, Any]:
    text = request.form.get('message', '')
    image_url = request.form.get('image_url') or None

    async def run() -> tuple[SessionController, Turn]:
        controller = await _open_session(llm, module_id)
        return controller, await controller.send_message(text, image_url=image_url)

    try:
        controller, reply = asyncio.run(run())
    except EmptyInput as e:
        abort(400, str(e))
    except AlreadyCompleted as e:
        abort(409, str(e))

    return _session_response(controller, reply=reply.to_dict())


@bp.route("/<int:module_id>/evaluate", methods=['POST'])
@with_llm
def evaluate(module_id: int, llm: LLM) -> dict[str, Any]:
    async def run() -> tuple[SessionController, Evaluation | None]:
        controller = await _open_session(llm, module_id)
        return controller, await controller.evaluate()

    controller, evaluation = asyncio.run(run())
    return _session_response(controller, evaluated=evaluation is not None)


@bp.route("/<int:module_id>/save", methods=['POST'])
@with_llm
def save(module_id: int, llm: LLM) -> dict[str, Any]:
    controller = asyncio.run(_open_session(llm, module_id))
    saved = controller.save()
    if saved and controller.state.is_completed:
        # nothing left to change; reload from the store if it is opened again
        drop_live_state(controller.user_id, module_id)
    return _session_response(controller, saved=saved)
