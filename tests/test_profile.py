# SPDX-FileCopyrightText: 2023 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

from jumpahead.auth import get_auth


def test_profile_requires_login(client):
    assert client.get('/profile/').status_code == 401
    assert client.post('/profile/', data={'role': 'student'}).status_code == 401


def test_get_profile(student):
    data = student.get('/profile/').json
    assert data['user_id'] == 2
    assert data['profile']['role'] == 'student'
    assert data['profile']['first_name'] == 'Zoe'
    assert data['profile']['department_or_subject'] == 'Biology'


def test_get_missing_profile(client, auth):
    auth.login('noprofile')
    data = client.get('/profile/').json
    assert data['display_name'] == 'noprofile'
    assert data['profile'] is None


def test_create_profile(client, auth):
    auth.login('noprofile')
    with client:
        response = client.post('/profile/', data={
            'role': 'teacher',
            'first_name': ' Nora ',
            'last_name': 'Newton',
            'school_or_university': 'Tech Institute',
            'department_or_subject': 'Physics',
        })
        assert response.status_code == 200
        assert response.json['profile']['first_name'] == 'Nora'
        assert response.json['notifications'][0]['level'] == 'success'
        assert get_auth().is_teacher

    data = client.get('/profile/').json
    assert data['profile']['role'] == 'teacher'
    assert data['profile']['school_or_university'] == 'Tech Institute'

    # the new role takes effect immediately
    assert client.post('/courses/', data={'course_name': 'Mechanics'}).status_code == 200


def test_update_profile(student):
    response = student.post('/profile/', data={'role': 'student', 'first_name': 'Zoey', 'last_name': 'Zimmer'})
    assert response.status_code == 200

    profile = student.get('/profile/').json['profile']
    assert profile['first_name'] == 'Zoey'
    assert profile['school_or_university'] == ''


def test_invalid_role(student):
    response = student.post('/profile/', data={'role': 'admin'})
    assert response.status_code == 400
    assert student.get('/profile/').json['profile']['role'] == 'student'
