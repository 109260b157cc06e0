# SPDX-FileCopyrightText: 2023 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

import tempfile
from collections.abc import Generator
from pathlib import Path

import openai
import pytest
from dotenv import find_dotenv, load_dotenv
from flask import Flask
from flask.testing import FlaskClient, FlaskCliRunner
from werkzeug.security import generate_password_hash
from werkzeug.test import TestResponse

import jumpahead
from jumpahead.db import get_db, init_db
from jumpahead.testing.mocks import ScriptedCompletions, mock_async_completion

# Load test DB data
test_sql = Path(__file__).parent / 'test_data.sql'
with test_sql.open('rb') as f:
    _test_data_sql = f.read().decode('utf8')

# every user in test_data.sql has this password
TEST_PASSWORD = 'testpassword'
_test_password_hash = generate_password_hash(TEST_PASSWORD)


@pytest.fixture(scope='session', autouse=True)
def _load_env() -> None:
    env_file = find_dotenv('.env.test')
    load_dotenv(env_file)


@pytest.fixture
def oracle() -> ScriptedCompletions:
    """ The scripted completions used in place of OpenAI.  Queue replies on it
    (strings, or exceptions to raise) and inspect its recorded calls.
    """
    return ScriptedCompletions()


@pytest.fixture
def app(monkeypatch: pytest.MonkeyPatch, request: pytest.FixtureRequest, oracle: ScriptedCompletions) -> Generator[Flask]:
    """ Provides an application object and by default monkey patches openai to
    *not* send requests: the most common case for testing.

    If used in a test decorated with @pytest.mark.use_real_openai, then it will
    *not* patch openai, and requests in that test will go to the real OpenAI
    endpoint.
    """
    if "use_real_openai" not in request.keywords:  # the default is that the marker is *not* used
        monkeypatch.setattr(openai.resources.chat.AsyncCompletions, "create", mock_async_completion(oracle))

    # Create a temporary app root with instance directory
    with tempfile.TemporaryDirectory() as temp_dir:
        instance_path = Path(temp_dir)

        db_path = instance_path / 'test.db'

        app = jumpahead.create_app(
            test_config={
                'TESTING': True,
                'DATABASE': str(db_path),
                'OPENAI_API_KEY': 'invalid',  # ensure an invalid API key for testing
            },
            instance_path=instance_path,
        )

        with app.app_context():
            init_db()
            db = get_db()
            db.executescript(_test_data_sql)
            db.execute("UPDATE auth_local SET password=?", [_test_password_hash])
            db.commit()

        yield app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    return app.test_client()


@pytest.fixture
def runner(app: Flask) -> FlaskCliRunner:
    return app.test_cli_runner()


class AuthActions:
    def __init__(self, client: FlaskClient):
        self._client = client

    def login(self, username: str='student1', password: str=TEST_PASSWORD) -> TestResponse:
        return self._client.post(
            '/auth/login',
            data={'username': username, 'password': password}
        )

    def logout(self) -> TestResponse:
        return self._client.post('/auth/logout')


@pytest.fixture
def auth(client: FlaskClient) -> AuthActions:
    return AuthActions(client)


@pytest.fixture
def student(app: Flask) -> FlaskClient:
    """ A client logged in as student1 (user 2), enrolled in course 1. """
    client = app.test_client()
    response = AuthActions(client).login('student1')
    assert response.status_code == 200
    return client


@pytest.fixture
def teacher(app: Flask) -> FlaskClient:
    """ A client logged in as teacher1 (user 1), owner of course 1. """
    client = app.test_client()
    response = AuthActions(client).login('teacher1')
    assert response.status_code == 200
    return client
