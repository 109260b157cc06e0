# SPDX-FileCopyrightText: 2023 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

import secrets
import sqlite3
import string
from datetime import datetime

import click
from flask import current_app, g
from flask.app import Flask
from werkzeug.security import generate_password_hash


class StoreUnavailable(Exception):
    """The data store could not complete a query or write."""
    def __init__(self, action: str, cause: sqlite3.Error | None = None):
        super().__init__(f"Store error while trying to {action}: {cause}")
        self.action = action


class NotFound(Exception):
    """A requested record (module, course, profile, ...) does not exist."""
    def __init__(self, kind: str, key: object):
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


# Timestamps are stored as ISO 8601 text and read back as datetime objects
# (columns declared TIMESTAMP, including SQLite's CURRENT_TIMESTAMP values).
def _adapt_datetime(val: datetime) -> str:
    return val.isoformat()

def _convert_timestamp(val: bytes) -> datetime:
    return datetime.fromisoformat(val.decode())

sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("timestamp", _convert_timestamp)


def get_db() -> sqlite3.Connection:
    """ The current app context's connection, opened on first use. """
    if 'db' in g:
        assert isinstance(g.db, sqlite3.Connection)
        return g.db

    conn = sqlite3.connect(current_app.config['DATABASE'], detect_types=sqlite3.PARSE_DECLTYPES)
    conn.row_factory = sqlite3.Row
    for pragma in (
        "journal_mode = WAL",
        "synchronous = NORMAL",  # safe with WAL
        "busy_timeout = 5000",   # wait on locked writes rather than failing
        "foreign_keys = ON",
    ):
        conn.execute(f"PRAGMA {pragma}")

    g.db = conn
    return conn


def close_db(_e: BaseException | None = None) -> None:
    conn = g.pop('db', None)
    if conn is not None:
        conn.close()


def init_db() -> None:
    db = get_db()

    with current_app.open_resource('schema.sql', mode='r', encoding='utf-8') as f:
        db.executescript(f.read())

    db.commit()


def create_local_user(username: str, password: str, display_name: str | None = None) -> int:
    """Create a user with a local (username/password) login.  Returns the new user's id."""
    db = get_db()
    cur = db.execute("INSERT INTO users(display_name) VALUES(?)", [display_name or username])
    user_id = cur.lastrowid
    assert user_id is not None
    db.execute("INSERT INTO auth_local(user_id, username, password) VALUES(?, ?, ?)",
               [user_id, username, generate_password_hash(password)])
    db.commit()
    return user_id


@click.command('initdb')
def init_db_command() -> None:
    """Clear the existing data and create new tables."""
    init_db()
    click.echo('Initialized the database.')


@click.command('newuser')
@click.argument('username')
@click.option('--teacher', is_flag=True, help="Give the new user a teacher profile.")
@click.option('--student', is_flag=True, help="Give the new user a student profile.")
def newuser_command(username: str, *, teacher: bool = False, student: bool = False) -> None:
    """Add a new user to the database.  Generates and prints a random password."""
    db = get_db()

    if teacher and student:
        click.secho("Error: choose at most one of --teacher and --student.", fg='red')
        return

    # Check for pre-existing username
    existing = db.execute("SELECT username FROM auth_local WHERE username=?", [username]).fetchone()
    if existing:
        click.secho(f"Error: username {username} already exists.", fg='red')
        return

    new_password = ''.join(secrets.choice(string.ascii_letters) for _ in range(6))
    user_id = create_local_user(username, new_password)

    if teacher or student:
        role = 'teacher' if teacher else 'student'
        db.execute("INSERT INTO user_profiles(user_id, role) VALUES(?, ?)", [user_id, role])
        db.commit()

    click.secho("User added to the database:", fg='green')
    click.echo(f"  username: {username}\n  password: {new_password}")


def init_app(app: Flask) -> None:
    app.teardown_appcontext(close_db)
    app.cli.add_command(init_db_command)
    app.cli.add_command(newuser_command)
