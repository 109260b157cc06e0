# SPDX-FileCopyrightText: 2023 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any, Literal, ParamSpec, TypeVar

from flask import (
    Blueprint,
    abort,
    current_app,
    g,
    request,
    session,
)
from werkzeug.security import check_password_hash

from .db import get_db

# Constants
AUTH_SESSION_KEY = "__jumpahead_auth"

RoleType = Literal['student', 'teacher']


@dataclass(frozen=True)
class UserData:
    id: int
    display_name: str


@dataclass(frozen=True)
class AuthData:
    user: UserData | None = None
    role: RoleType | None = None  # None until the user has filled in a profile

    @property
    def user_id(self) -> int | None:
        return self.user.id if self.user else None

    @property
    def is_teacher(self) -> bool:
        return self.role == 'teacher'

    @property
    def is_student(self) -> bool:
        return self.role == 'student'


def _invalidate_g_auth() -> None:
    """ Ensure no auth data is cached in the g object.
        Use after modifying auth data stored in the session or a user's
        profile, so g.auth will be regenerated on next access in get_auth().
    """
    g.pop('auth', None)


def set_session_auth_user(user_id: int) -> None:
    """ Set the current session's user (on login, after authentication).
        Clears all other auth data in the session.
    """
    session[AUTH_SESSION_KEY] = {'user_id': user_id}
    _invalidate_g_auth()


def _get_auth_from_session() -> AuthData:
    """ Populate auth data for the current session based on its current user_id (if any). """
    sess_auth = session.get(AUTH_SESSION_KEY, {})
    user_id = sess_auth.get('user_id', None)

    if not user_id:
        # No logged in user; return the default/empty auth data
        return AuthData()

    db = get_db()

    user_row = db.execute("""
        SELECT
            users.display_name,
            user_profiles.role
        FROM users
        LEFT JOIN user_profiles ON user_profiles.user_id=users.id
        WHERE users.id=?
    """, [user_id]).fetchone()

    if not user_row:
        # Fall through if user_id is not in database (deleted from DB?)
        return AuthData()

    return AuthData(
        user=UserData(id=user_id, display_name=user_row['display_name']),
        role=user_row['role'],
    )


def get_auth() -> AuthData:
    if 'auth' not in g:
        g.auth = _get_auth_from_session()

    return g.auth  # type: ignore[no-any-return]


def refresh_auth() -> AuthData:
    """ Reload auth data after a change to the user's profile. """
    _invalidate_g_auth()
    return get_auth()


bp = Blueprint('auth', __name__)


@bp.route("/login", methods=['POST'])
def local_login() -> dict[str, Any]:
    username = request.form.get('username', '')
    password = request.form.get('password', '')
    db = get_db()
    auth_row = db.execute("SELECT * FROM auth_local JOIN users ON auth_local.user_id=users.id WHERE username=?", [username]).fetchone()

    if not auth_row or not check_password_hash(auth_row['password'], password):
        current_app.logger.info(f"Failed login attempt for '{username}'")
        abort(401, "Invalid username or password.")

    set_session_auth_user(auth_row['id'])
    auth = get_auth()
    return {'user_id': auth.user_id, 'display_name': auth.user.display_name if auth.user else None, 'role': auth.role}


@bp.route("/logout", methods=['POST'])
def logout() -> dict[str, Any]:
    session.clear()  # clear the entire session to be safest here.
    _invalidate_g_auth()
    return {'notifications': [{'level': 'info', 'message': "You have been logged out."}]}


# For decorator type hints
P = ParamSpec('P')
R = TypeVar('R')


def login_required(f: Callable[P, R]) -> Callable[P, R]:
    '''Reject this route with a 401 if the user is not logged in.'''
    @wraps(f)
    def decorated_function(*args: P.args, **kwargs: P.kwargs) -> R:
        auth = get_auth()
        if not auth.user:
            abort(401, "Login required.")
        return f(*args, **kwargs)
    return decorated_function


def _role_required(role: RoleType) -> Callable[[Callable[P, R]], Callable[P, R]]:
    def decorator(f: Callable[P, R]) -> Callable[P, R]:
        @wraps(f)
        def decorated_function(*args: P.args, **kwargs: P.kwargs) -> R:
            auth = get_auth()
            if not auth.user:
                abort(401, "Login required.")
            if auth.role != role:
                abort(403, f"Only {role}s can do that.  Please check your profile.")
            return f(*args, **kwargs)
        return decorated_function
    return decorator


teacher_required = _role_required('teacher')
student_required = _role_required('student')
