# SPDX-FileCopyrightText: 2025 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

import json
from typing import Any

from flask import Blueprint, abort

from .auth import get_auth, teacher_required
from .db import NotFound, get_db

bp = Blueprint('dashboard', __name__)


@bp.route("/<int:course_id>")
@teacher_required
def course_dashboard(course_id: int) -> dict[str, Any]:
    """ Every active student's progress on every module of a course, by student name. """
    db = get_db()
    auth = get_auth()

    course_row = db.execute("SELECT course_name, user_id FROM courses WHERE course_id=?", [course_id]).fetchone()
    if not course_row:
        raise NotFound("course", course_id)
    if course_row['user_id'] != auth.user_id:
        abort(403, "You can only view the dashboard for your own courses.")

    rows = db.execute("""
        SELECT
            users.id AS user_id,
            COALESCE(NULLIF(TRIM(user_profiles.first_name || ' ' || user_profiles.last_name), ''), users.display_name) AS student_name,
            learning_modules.learning_module_id,
            learning_modules.title AS module_title,
            module_enrollments.status,
            module_enrollments.saved_chat_history,
            module_enrollments.saved_evaluation,
            module_enrollments.saved_avg_score
        FROM course_enrollments
        JOIN users ON users.id=course_enrollments.user_id
        LEFT JOIN user_profiles ON user_profiles.user_id=users.id
        JOIN learning_modules ON learning_modules.course_id=course_enrollments.course_id
        JOIN module_enrollments
          ON module_enrollments.learning_module_id=learning_modules.learning_module_id
         AND module_enrollments.user_id=users.id
        WHERE course_enrollments.course_id=?
          AND course_enrollments.status='active'
        ORDER BY student_name, learning_modules.learning_module_id
    """, [course_id]).fetchall()

    records = [
        {
            'user_id': row['user_id'],
            'student_name': row['student_name'],
            'learning_module_id': row['learning_module_id'],
            'module_title': row['module_title'],
            'status': row['status'],
            'chat_history': json.loads(row['saved_chat_history'] or '[]'),
            'evaluation': row['saved_evaluation'],
            'avg_score': row['saved_avg_score'],
        }
        for row in rows
    ]

    return {'course_id': course_id, 'course_name': course_row['course_name'], 'records': records}
