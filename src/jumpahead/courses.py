# SPDX-FileCopyrightText: 2023 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

import json
import secrets
from typing import Any

from flask import Blueprint, abort, current_app, request

from .auth import get_auth, login_required, student_required, teacher_required
from .db import NotFound, get_db

bp = Blueprint('courses', __name__)

COURSE_CODE_LENGTH = 6


@bp.before_request
@login_required
def before_request() -> None:
    """Apply decorators to protect all courses blueprint endpoints."""


def generate_course_code() -> str:
    """ A random 6-digit code, not yet used by any course. """
    db = get_db()

    is_unique = False
    while not is_unique:
        course_code = f"{secrets.randbelow(10**COURSE_CODE_LENGTH):0{COURSE_CODE_LENGTH}d}"
        match_row = db.execute("SELECT 1 FROM courses WHERE course_code=?", [course_code]).fetchone()
        is_unique = not match_row

    return course_code


def create_course(user_id: int, course_name: str) -> dict[str, Any]:
    """
    Create a course owned by the given teacher.

    Returns the new course's id, name, and join code.
    """
    db = get_db()
    course_code = generate_course_code()

    cur = db.execute("INSERT INTO courses (course_name, course_code, user_id) VALUES (?, ?, ?)", [course_name, course_code, user_id])
    course_id = cur.lastrowid
    assert course_id is not None
    db.commit()

    current_app.logger.info(f"New course: {course_name} ({course_id}) by user {user_id}")

    return {'course_id': course_id, 'course_name': course_name, 'course_code': course_code}


@bp.route("/", methods=['POST'])
@teacher_required
def create_course_handler() -> dict[str, Any]:
    auth = get_auth()
    assert auth.user_id is not None

    course_name = request.form.get('course_name', '').strip()
    if not course_name:
        abort(400, "Please enter a course name.")

    course = create_course(auth.user_id, course_name)
    return {
        'course': course,
        'notifications': [{'level': 'success', 'message': f"Course created.  Students can join with code {course['course_code']}."}],
    }


@bp.route("/")
def list_courses() -> dict[str, Any]:
    """ A teacher's own courses, or the courses a student is actively enrolled in. """
    db = get_db()
    auth = get_auth()

    if auth.is_teacher:
        course_rows = db.execute("""
            SELECT
                courses.course_id,
                courses.course_name,
                courses.course_code,
                courses.created_at,
                (SELECT COUNT(*) FROM course_enrollments WHERE course_enrollments.course_id=courses.course_id AND status='active') AS student_count,
                (SELECT COUNT(*) FROM learning_modules WHERE learning_modules.course_id=courses.course_id) AS module_count
            FROM courses
            WHERE courses.user_id=?
            ORDER BY courses.created_at DESC, courses.course_id DESC
        """, [auth.user_id]).fetchall()
    elif auth.is_student:
        course_rows = db.execute("""
            SELECT
                courses.course_id,
                courses.course_name,
                course_enrollments.enrolled_at
            FROM course_enrollments
            JOIN courses ON courses.course_id=course_enrollments.course_id
            WHERE course_enrollments.user_id=?
              AND course_enrollments.status='active'
            ORDER BY course_enrollments.enrolled_at DESC, courses.course_id DESC
        """, [auth.user_id]).fetchall()
    else:
        abort(403, "Please complete your profile first.")

    return {'courses': [_jsonable(row) for row in course_rows]}


def _jsonable(row: Any) -> dict[str, Any]:
    return {key: (val.isoformat() if hasattr(val, 'isoformat') else val) for key, val in dict(row).items()}


@bp.route("/enroll", methods=['POST'])
@student_required
def enroll() -> dict[str, Any]:
    db = get_db()
    auth = get_auth()

    course_code = request.form.get('course_code', '').strip()
    course_row = db.execute("SELECT course_id, course_name FROM courses WHERE course_code=?", [course_code]).fetchone()
    if not course_row:
        abort(404, "Invalid course code.")

    existing = db.execute("SELECT 1 FROM course_enrollments WHERE course_id=? AND user_id=?", [course_row['course_id'], auth.user_id]).fetchone()
    if existing:
        abort(409, "You are already enrolled in this course.")

    db.execute("INSERT INTO course_enrollments (course_id, user_id) VALUES (?, ?)", [course_row['course_id'], auth.user_id])
    db.commit()

    current_app.logger.info(f"User {auth.user_id} enrolled in course {course_row['course_id']}")

    return {
        'course': {'course_id': course_row['course_id'], 'course_name': course_row['course_name']},
        'notifications': [{'level': 'success', 'message': f"Enrolled in {course_row['course_name']}."}],
    }


def _check_course_access(course_id: int) -> None:
    """ Abort unless the current user owns the course or is actively enrolled in it. """
    db = get_db()
    auth = get_auth()

    course_row = db.execute("SELECT user_id FROM courses WHERE course_id=?", [course_id]).fetchone()
    if not course_row:
        raise NotFound("course", course_id)

    if auth.is_teacher and course_row['user_id'] == auth.user_id:
        return

    if auth.is_student:
        enrolled = db.execute("""
            SELECT 1 FROM course_enrollments WHERE course_id=? AND user_id=? AND status='active'
        """, [course_id, auth.user_id]).fetchone()
        if enrolled:
            return

    abort(403, "You do not have access to this course.")


@bp.route("/<int:course_id>/modules")
def list_modules(course_id: int) -> dict[str, Any]:
    """ The course's learning modules.  For students, each module carries the
    student's status and saved average score, and any module the student has
    not seen yet gets a 'not_started' enrollment.
    """
    db = get_db()
    auth = get_auth()
    _check_course_access(course_id)

    if auth.is_student:
        db.execute("""
            INSERT INTO module_enrollments (user_id, learning_module_id, status)
            SELECT ?, learning_module_id, 'not_started'
            FROM learning_modules
            WHERE course_id=?
            ON CONFLICT (user_id, learning_module_id) DO NOTHING
        """, [auth.user_id, course_id])
        db.commit()

        module_rows = db.execute("""
            SELECT
                learning_modules.learning_module_id,
                learning_modules.title,
                learning_modules.description,
                module_enrollments.status,
                module_enrollments.saved_avg_score
            FROM learning_modules
            JOIN module_enrollments
              ON module_enrollments.learning_module_id=learning_modules.learning_module_id
             AND module_enrollments.user_id=?
            WHERE learning_modules.course_id=?
            ORDER BY learning_modules.created_at DESC, learning_modules.learning_module_id DESC
        """, [auth.user_id, course_id]).fetchall()
    else:
        module_rows = db.execute("""
            SELECT learning_module_id, title, description, knowledge_sources
            FROM learning_modules
            WHERE course_id=?
            ORDER BY created_at DESC, learning_module_id DESC
        """, [course_id]).fetchall()

    modules = [dict(row) for row in module_rows]
    for module in modules:
        if 'knowledge_sources' in module:
            module['knowledge_sources'] = json.loads(module['knowledge_sources'])

    return {'course_id': course_id, 'modules': modules}
