# SPDX-FileCopyrightText: 2025 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

import pytest


def test_dashboard(teacher):
    response = teacher.get('/dashboard/1')
    assert response.status_code == 200
    data = response.json
    assert data['course_name'] == 'Intro Biology'

    records = data['records']
    # sorted by student name: Adam Abbott before Zoe Zimmer; inactive students excluded
    assert [record['student_name'] for record in records] == ['Adam Abbott', 'Zoe Zimmer']

    adam, zoe = records
    assert adam['module_title'] == 'Photosynthesis'
    assert adam['status'] == 'completed'
    assert adam['avg_score'] == 4.2
    assert adam['chat_history'][1] == {'role': 'student', 'content': "Light, water, and carbon dioxide."}

    assert zoe['module_title'] == 'Cell Division'
    assert zoe['avg_score'] == 3.0
    assert "**Average Score:** 3.0" in zoe['evaluation']


def test_dashboard_includes_listed_modules(teacher, student):
    student.get('/courses/1/modules')  # creates not_started enrollments
    records = teacher.get('/dashboard/1').json['records']
    zoe_records = [record for record in records if record['student_name'] == 'Zoe Zimmer']
    assert len(zoe_records) == 3
    assert {record['status'] for record in zoe_records} == {'not_started', 'started'}


def test_dashboard_reflects_saved_session(teacher, student, oracle):
    student.get('/learn/1')
    student.post('/learn/1/message', data={'message': "Chlorophyll is green."})
    student.post('/learn/1/save')

    records = teacher.get('/dashboard/1').json['records']
    zoe_photo = next(r for r in records if r['student_name'] == 'Zoe Zimmer' and r['module_title'] == 'Photosynthesis')
    assert zoe_photo['status'] == 'started'
    assert zoe_photo['chat_history'][1]['content'] == "Chlorophyll is green."


@pytest.mark.parametrize(('course_id', 'status'), [
    (2, 403),
    (999, 404),
])
def test_dashboard_rejected(teacher, course_id, status):
    assert teacher.get(f'/dashboard/{course_id}').status_code == status


def test_dashboard_requires_teacher(student):
    assert student.get('/dashboard/1').status_code == 403
