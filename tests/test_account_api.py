from conftest import ADMIN_EMAIL, ADMIN_PASSWORD


def session_user(client):
    return client.get('/api/auth/session').get_json()['user']


def test_admin_updates_own_profile(admin_client):
    me = session_user(admin_client)
    res = admin_client.put(f"/api/users/{me['id']}", json={'name': 'Head Teacher', 'profileImage': 'me.png'})
    assert res.status_code == 200
    user = res.get_json()['user']
    assert user['name'] == 'Head Teacher'
    assert user['profileImage'] == 'me.png'
    assert user['email'] == ADMIN_EMAIL


def test_profile_email_must_be_free(admin_client, create_student):
    create_student()
    me = session_user(admin_client)
    res = admin_client.put(f"/api/users/{me['id']}", json={'email': 'ada@school.edu'})
    assert res.status_code == 409


def test_cannot_edit_someone_else(admin_client, create_student):
    create_student(password='ada-secret')
    me = session_user(admin_client)
    other = me['id'] + 1
    assert admin_client.put(f'/api/users/{other}', json={'name': 'Mallory'}).status_code == 403
    res = admin_client.post(f'/api/users/{other}/change-password',
                            json={'currentPassword': 'ada-secret', 'newPassword': 'hijacked'})
    assert res.status_code == 403


def test_account_routes_need_login(client):
    assert client.put('/api/users/1', json={'name': 'Nobody'}).status_code == 401
    assert client.post('/api/users/1/change-password', json={}).status_code == 401


def test_admin_changes_password(admin_client):
    me = session_user(admin_client)
    url = f"/api/users/{me['id']}/change-password"

    wrong = admin_client.post(url, json={'currentPassword': 'nope', 'newPassword': 'brand-new'})
    assert wrong.status_code == 400
    assert wrong.get_json()['msg'] == 'invalid_current_password'

    short = admin_client.post(url, json={'currentPassword': ADMIN_PASSWORD, 'newPassword': '123'})
    assert short.status_code == 400

    ok = admin_client.post(url, json={'currentPassword': ADMIN_PASSWORD, 'newPassword': 'brand-new'})
    assert ok.status_code == 200

    admin_client.post('/api/auth/logout')
    old = admin_client.post('/api/auth/login', json={'email': ADMIN_EMAIL, 'password': ADMIN_PASSWORD})
    assert old.status_code == 401
    new = admin_client.post('/api/auth/login', json={'email': ADMIN_EMAIL, 'password': 'brand-new'})
    assert new.status_code == 200


def test_student_changes_password(admin_client, create_student):
    create_student(password='ada-secret')
    admin_client.post('/api/auth/logout')
    login = {'email': 'ada@school.edu', 'password': 'ada-secret'}
    assert admin_client.post('/api/auth/student/login', json=login).status_code == 200

    me = session_user(admin_client)
    res = admin_client.post(f"/api/users/{me['id']}/change-password",
                            json={'currentPassword': 'ada-secret', 'newPassword': 'ada-new-secret'})
    assert res.status_code == 200

    # student login checks the password stored on the student record
    admin_client.post('/api/auth/logout')
    assert admin_client.post('/api/auth/student/login', json=login).status_code == 401
    login['password'] = 'ada-new-secret'
    assert admin_client.post('/api/auth/student/login', json=login).status_code == 200


def test_student_profile_change_reaches_student_record(admin_client, create_student):
    student = create_student(password='ada-secret')
    admin_client.post('/api/auth/logout')
    admin_client.post('/api/auth/student/login', json={'email': 'ada@school.edu', 'password': 'ada-secret'})

    me = session_user(admin_client)
    res = admin_client.put(f"/api/users/{me['id']}", json={'name': 'Ada King'})
    assert res.status_code == 200
    profile = admin_client.get('/api/student/profile').get_json()['student']
    assert profile['id'] == student['id']
    assert profile['name'] == 'Ada King'
