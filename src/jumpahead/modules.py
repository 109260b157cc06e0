# SPDX-FileCopyrightText: 2025 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

import asyncio
import json
from typing import Any
from urllib.parse import urlparse

from flask import Blueprint, abort, current_app, request

from .auth import get_auth, teacher_required
from .db import NotFound, get_db
from .learning import prompts
from .learning.session import drop_live_states
from .llm import LLM, ChatMessage, with_llm
from .openai_client import OracleUnavailable

bp = Blueprint('modules', __name__)

GENERATE_ARGS: dict[str, Any] = {'max_completion_tokens': 2000, 'temperature': 0.7}


@bp.before_request
@teacher_required
def before_request() -> None:
    """Apply decorators to protect all module authoring endpoints."""


def _get_owned_course(course_id: int) -> None:
    db = get_db()
    auth = get_auth()
    course_row = db.execute("SELECT user_id FROM courses WHERE course_id=?", [course_id]).fetchone()
    if not course_row:
        raise NotFound("course", course_id)
    if course_row['user_id'] != auth.user_id:
        abort(403, "You can only manage modules in your own courses.")


def _get_owned_module(module_id: int) -> int:
    """ Returns the module's course_id. """
    db = get_db()
    module_row = db.execute("SELECT course_id FROM learning_modules WHERE learning_module_id=?", [module_id]).fetchone()
    if not module_row:
        raise NotFound("learning module", module_id)
    _get_owned_course(module_row['course_id'])
    return int(module_row['course_id'])


def _knowledge_sources_from_form() -> list[str]:
    urls = [url.strip() for url in request.form.getlist('knowledge_sources') if url.strip()]
    for url in urls:
        if urlparse(url).scheme not in ('http', 'https'):
            abort(400, f"Invalid knowledge source URL: {url}")
    return urls


@bp.route("/", methods=['POST'])
def create_module() -> dict[str, Any]:
    db = get_db()
    auth = get_auth()

    try:
        course_id = int(request.form.get('course_id', ''))
    except ValueError:
        abort(400, "A course is required.")
    _get_owned_course(course_id)

    title = request.form.get('title', '').strip()
    description = request.form.get('description', '').strip()
    if not title or not description:
        abort(400, "A learning module needs a title and a description.")
    knowledge_sources = _knowledge_sources_from_form()

    cur = db.execute("""
        INSERT INTO learning_modules (course_id, user_id, title, description, knowledge_sources)
        VALUES (?, ?, ?, ?, ?)
    """, [course_id, auth.user_id, title, description, json.dumps(knowledge_sources)])
    module_id = cur.lastrowid
    db.commit()

    current_app.logger.info(f"New learning module: {title} ({module_id}) in course {course_id}")

    return {
        'module': {
            'learning_module_id': module_id,
            'course_id': course_id,
            'title': title,
            'description': description,
            'knowledge_sources': knowledge_sources,
        },
        'notifications': [{'level': 'success', 'message': "Learning module created."}],
    }


@bp.route("/<int:module_id>", methods=['POST'])
def update_module(module_id: int) -> dict[str, Any]:
    """ Update a module's title and description, and its knowledge sources if any are given. """
    db = get_db()
    course_id = _get_owned_module(module_id)

    title = request.form.get('title', '').strip()
    description = request.form.get('description', '').strip()
    if not title or not description:
        abort(400, "A learning module needs a title and a description.")

    if 'knowledge_sources' in request.form:
        db.execute("UPDATE learning_modules SET knowledge_sources=? WHERE learning_module_id=?",
                   [json.dumps(_knowledge_sources_from_form()), module_id])
    db.execute("""
        UPDATE learning_modules
        SET title=?, description=?, updated_at=CURRENT_TIMESTAMP
        WHERE learning_module_id=?
    """, [title, description, module_id])
    db.commit()

    # live sessions hold the old module text
    drop_live_states(module_id)

    return {
        'module': {'learning_module_id': module_id, 'course_id': course_id, 'title': title, 'description': description},
        'notifications': [{'level': 'success', 'message': "Learning module updated."}],
    }


def _conversation_from_form(*, allow_empty: bool = False) -> list[ChatMessage]:
    raw = request.form.get('conversation', '')
    if allow_empty and not raw.strip():
        return []
    try:
        conversation = json.loads(raw)
    except json.JSONDecodeError:
        abort(400, "Invalid conversation data.")

    if not isinstance(conversation, list):
        abort(400, "Invalid conversation data.")
    if not conversation and not allow_empty:
        abort(400, "The design conversation is empty.")

    messages: list[ChatMessage] = []
    for item in conversation:
        if not isinstance(item, dict) or not isinstance(item.get('content'), str):
            abort(400, "Invalid conversation data.")
        role = 'assistant' if item.get('role') == 'assistant' else 'user'
        messages.append({'role': role, 'content': item['content']})  # type: ignore[misc]
    return messages


@bp.route("/design", methods=['POST'])
@with_llm
def design_chat(llm: LLM) -> dict[str, Any]:
    """ One turn of a teacher's conversation with the module design assistant.

    The client sends the conversation so far (if any) with the teacher's new
    message, and gets back the assistant's reply and the extended conversation.
    """
    conversation = _conversation_from_form(allow_empty=True)
    message = request.form.get('message', '').strip()
    if not message:
        abort(400, "Please enter a message.")
    conversation.append({'role': 'user', 'content': message})

    try:
        _response, reply = asyncio.run(llm.get_completion(
            messages=[{'role': 'system', 'content': prompts.module_design_sys_msg}, *conversation],
            extra_args=prompts.DESIGN_ARGS,
        ))
    except OracleUnavailable as e:
        abort(503, str(e))

    if not reply:
        abort(503, "The design assistant returned an empty response.  Please try again.")

    conversation.append({'role': 'assistant', 'content': reply})
    return {'reply': reply, 'conversation': conversation}


async def generate_module_report(llm: LLM, conversation: list[ChatMessage]) -> str:
    """ Summarize a teacher's design conversation, then expand the summary
    into a full learning module report (used as the module's description).
    """
    _response, summary = await llm.get_completion(
        messages=[{'role': 'system', 'content': prompts.module_summary_sys_msg}, *conversation],
        extra_args=GENERATE_ARGS,
    )
    _response, report = await llm.get_completion(
        messages=[
            {'role': 'system', 'content': prompts.module_report_prompt},
            {'role': 'user', 'content': summary},
        ],
        extra_args=GENERATE_ARGS,
    )
    return report


@bp.route("/generate", methods=['POST'])
@with_llm
def generate_module(llm: LLM) -> dict[str, Any]:
    conversation = _conversation_from_form()

    try:
        report = asyncio.run(generate_module_report(llm, conversation))
    except OracleUnavailable as e:
        abort(503, str(e))

    if not report:
        abort(503, "The tutor returned an empty module report.  Please try again.")

    return {'description': report}
