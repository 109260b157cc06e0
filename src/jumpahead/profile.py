# SPDX-FileCopyrightText: 2023 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

from typing import Any

from flask import Blueprint, abort, current_app, request

from .auth import get_auth, login_required, refresh_auth
from .db import get_db

bp = Blueprint('profile', __name__)

PROFILE_FIELDS = ('first_name', 'last_name', 'school_or_university', 'department_or_subject')


@bp.before_request
@login_required
def before_request() -> None:
    """Apply decorators to protect all profile blueprint endpoints."""


@bp.route("/")
def main() -> dict[str, Any]:
    db = get_db()
    auth = get_auth()
    user_id = auth.user_id
    assert user_id is not None

    profile_row = db.execute("""
        SELECT role, first_name, last_name, school_or_university, department_or_subject
        FROM user_profiles
        WHERE user_id=?
    """, [user_id]).fetchone()

    return {
        'user_id': user_id,
        'display_name': auth.user.display_name if auth.user else None,
        'profile': dict(profile_row) if profile_row else None,
    }


@bp.route("/", methods=['POST'])
def update_profile() -> dict[str, Any]:
    """ Create the profile or update the existing one. """
    db = get_db()
    auth = get_auth()
    user_id = auth.user_id
    assert user_id is not None

    role = request.form.get('role', '')
    if role not in ('student', 'teacher'):
        abort(400, "Please choose a role: student or teacher.")

    values = [request.form.get(name, '').strip() for name in PROFILE_FIELDS]

    db.execute("""
        INSERT INTO user_profiles (user_id, role, first_name, last_name, school_or_university, department_or_subject)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT (user_id) DO UPDATE
        SET role=excluded.role,
            first_name=excluded.first_name,
            last_name=excluded.last_name,
            school_or_university=excluded.school_or_university,
            department_or_subject=excluded.department_or_subject,
            updated_at=CURRENT_TIMESTAMP
    """, [user_id, role, *values])
    db.commit()

    current_app.logger.info(f"Profile saved for user {user_id} (role: {role})")
    refresh_auth()

    return {
        'profile': {'role': role} | dict(zip(PROFILE_FIELDS, values, strict=True)),
        'notifications': [{'level': 'success', 'message': "Profile saved successfully."}],
    }
