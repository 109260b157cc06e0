# SPDX-FileCopyrightText: 2023 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

import re

import pytest

from jumpahead.auth import get_auth


@pytest.mark.parametrize(('username', 'password'), [
    ('', ''),
    ('student1', ''),
    ('student1', 'wrongpassword'),
    ('nobody', 'testpassword'),
])
def test_invalid_login(client, auth, username, password):
    with client:
        response = auth.login(username, password)
        assert response.status_code == 401
        assert response.json == {'error': "Invalid username or password."}
        assert get_auth().user is None


@pytest.mark.parametrize(('username', 'role'), [
    ('teacher1', 'teacher'),
    ('student1', 'student'),
    ('noprofile', None),
])
def test_login(client, auth, username, role):
    with client:
        response = auth.login(username)
        assert response.status_code == 200
        assert response.json['display_name'] == username
        assert response.json['role'] == role

        client.get('/profile/')  # any request, to populate the session auth
        sessauth = get_auth()
        assert sessauth.user
        assert sessauth.user.display_name == username
        assert sessauth.role == role
        assert sessauth.is_teacher == (role == 'teacher')
        assert sessauth.is_student == (role == 'student')


def test_logout(client, auth):
    with client:
        auth.login()
        assert client.get('/profile/').status_code == 200

        response = auth.logout()
        assert response.status_code == 200
        assert response.json['notifications'][0]['level'] == 'info'

        assert client.get('/profile/').status_code == 401
        assert get_auth().user is None


def test_newuser_command(app, runner, client, auth):
    username = "_newuser_"
    assert auth.login(username, 'x').status_code == 401

    with app.app_context():
        cmd_result = runner.invoke(args=['newuser', username, '--student'])
    assert "User added" in cmd_result.output
    match = re.search(r"password: (\w+)", cmd_result.output)
    assert match
    password = match.group(1)

    response = auth.login(username, password)
    assert response.status_code == 200
    assert response.json['role'] == 'student'


def test_newuser_command_duplicate(app, runner):
    with app.app_context():
        cmd_result = runner.invoke(args=['newuser', 'student1'])
    assert "already exists" in cmd_result.output


def test_newuser_command_both_roles(app, runner, auth):
    with app.app_context():
        cmd_result = runner.invoke(args=['newuser', '_both_', '--teacher', '--student'])
    assert "at most one" in cmd_result.output
    assert auth.login('_both_', 'x').status_code == 401
