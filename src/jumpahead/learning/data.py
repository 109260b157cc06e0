# SPDX-FileCopyrightText: 2025 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Self, TypeAlias

from flask import current_app

from jumpahead.db import NotFound, StoreUnavailable, get_db

TurnRole: TypeAlias = Literal['assistant', 'student']
EnrollmentStatus: TypeAlias = Literal['not_started', 'started', 'completed']


@dataclass(frozen=True)
class Turn:
    role: TurnRole
    content: str
    image_url: str | None = None

    @classmethod
    def assistant(cls, content: str) -> Self:
        return cls(role='assistant', content=content)

    @classmethod
    def student(cls, content: str, image_url: str | None = None) -> Self:
        return cls(role='student', content=content, image_url=image_url)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        role = data.get('role')
        if role not in ('assistant', 'student'):
            raise ValueError(f"Invalid turn role: {role!r}")
        return cls(role=role, content=str(data.get('content', '')), image_url=data.get('imageUrl'))

    def to_dict(self) -> dict[str, str]:
        data = {'role': self.role, 'content': self.content}
        if self.image_url:
            data['imageUrl'] = self.image_url
        return data


def turns_to_json(turns: list[Turn]) -> str:
    return json.dumps([turn.to_dict() for turn in turns])


def turns_from_json(value: str | None) -> list[Turn]:
    if not value:
        return []
    return [Turn.from_dict(item) for item in json.loads(value)]


@dataclass(frozen=True)
class LearningModule:
    id: int
    course_id: int
    title: str
    description: str
    knowledge_sources: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ModuleEnrollment:
    user_id: int
    module_id: int
    status: EnrollmentStatus
    saved_chat_history: list[Turn]
    saved_evaluation: str | None
    saved_avg_score: float | None
    completed_at: datetime | None


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """ Convert any database error in the block into StoreUnavailable. """
    try:
        yield
    except sqlite3.Error as e:
        current_app.logger.error(f"Database error while trying to {action}: {e}")
        raise StoreUnavailable(action, e) from e


def get_module(module_id: int) -> LearningModule:
    with _store_errors("load a learning module"):
        row = get_db().execute("""
            SELECT learning_module_id, course_id, title, description, knowledge_sources
            FROM learning_modules
            WHERE learning_module_id=?
        """, [module_id]).fetchone()

    if not row:
        raise NotFound("learning module", module_id)

    return LearningModule(
        id=row['learning_module_id'],
        course_id=row['course_id'],
        title=row['title'],
        description=row['description'],
        knowledge_sources=json.loads(row['knowledge_sources'] or '[]'),
    )


def get_enrollment(user_id: int, module_id: int) -> ModuleEnrollment | None:
    with _store_errors("load a saved session"):
        row = get_db().execute("""
            SELECT status, saved_chat_history, saved_evaluation, saved_avg_score, completed_at
            FROM module_enrollments
            WHERE user_id=? AND learning_module_id=?
        """, [user_id, module_id]).fetchone()

    if not row:
        return None

    return ModuleEnrollment(
        user_id=user_id,
        module_id=module_id,
        status=row['status'],
        saved_chat_history=turns_from_json(row['saved_chat_history']),
        saved_evaluation=row['saved_evaluation'],
        saved_avg_score=row['saved_avg_score'],
        completed_at=row['completed_at'],
    )


def mark_started(user_id: int, module_id: int) -> None:
    """ Create the enrollment as 'started', or move an existing one to 'started'.
    A completed enrollment is never moved back.
    """
    db = get_db()
    with _store_errors("mark the session as started"):
        db.execute("""
            INSERT INTO module_enrollments (user_id, learning_module_id, status)
            VALUES (?, ?, 'started')
            ON CONFLICT (user_id, learning_module_id) DO UPDATE
            SET status='started', updated_at=CURRENT_TIMESTAMP
            WHERE module_enrollments.status != 'completed'
        """, [user_id, module_id])
        db.commit()


def save_enrollment(user_id: int, module_id: int, *, turns: list[Turn], evaluation: str | None, avg_score: float | None, status: EnrollmentStatus) -> None:
    """ Persist a session's turns, evaluation, and status as one upsert. """
    db = get_db()
    with _store_errors("save the session"):
        db.execute("""
            INSERT INTO module_enrollments (user_id, learning_module_id, status, saved_chat_history, saved_evaluation, saved_avg_score)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (user_id, learning_module_id) DO UPDATE
            SET status=CASE WHEN module_enrollments.status='completed' THEN 'completed' ELSE excluded.status END,
                saved_chat_history=excluded.saved_chat_history,
                saved_evaluation=excluded.saved_evaluation,
                saved_avg_score=CASE
                    WHEN excluded.saved_avg_score IS NULL THEN module_enrollments.saved_avg_score
                    WHEN module_enrollments.status='completed' THEN MAX(COALESCE(module_enrollments.saved_avg_score, 0), excluded.saved_avg_score)
                    ELSE excluded.saved_avg_score
                END,
                updated_at=CURRENT_TIMESTAMP
        """, [user_id, module_id, status, turns_to_json(turns), evaluation, avg_score])
        db.commit()


def record_evaluation(user_id: int, module_id: int, evaluation: str, avg_score: float) -> None:
    db = get_db()
    with _store_errors("save the evaluation"):
        db.execute("""
            INSERT INTO module_enrollments (user_id, learning_module_id, status, saved_evaluation, saved_avg_score)
            VALUES (?, ?, 'started', ?, ?)
            ON CONFLICT (user_id, learning_module_id) DO UPDATE
            SET saved_evaluation=excluded.saved_evaluation,
                saved_avg_score=CASE WHEN module_enrollments.status='completed'
                    THEN MAX(COALESCE(module_enrollments.saved_avg_score, 0), excluded.saved_avg_score)
                    ELSE excluded.saved_avg_score
                END,
                updated_at=CURRENT_TIMESTAMP
        """, [user_id, module_id, evaluation, avg_score])
        db.commit()


def mark_completed(user_id: int, module_id: int, avg_score: float, completed_at: datetime) -> None:
    db = get_db()
    with _store_errors("mark the module as completed"):
        db.execute("""
            UPDATE module_enrollments
            SET status='completed', completed_at=?, saved_avg_score=?, updated_at=CURRENT_TIMESTAMP
            WHERE user_id=? AND learning_module_id=?
        """, [completed_at, avg_score, user_id, module_id])
        db.commit()
