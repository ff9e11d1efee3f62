from conftest import login


def test_create_user_and_login(client, admin_headers):
    res = client.post('/api/users', json={"username": "rina", "password": "rahasia", "role": "kasir",
                                          "name": "Rina"}, headers=admin_headers)
    assert res.status_code == 201
    data = res.get_json()['data']
    assert data['role'] == 'kasir'
    assert 'password' not in data and 'password_hash' not in data
    assert login(client, 'rina', 'rahasia').get_json()['data']['user']['name'] == 'Rina'


def test_duplicate_username_conflict_keeps_first_row(client, admin_headers):
    client.post('/api/users', json={"username": "rina", "password": "satu", "role": "kasir", "name": "Pertama"},
                headers=admin_headers)
    res = client.post('/api/users', json={"username": "rina", "password": "dua", "role": "admin",
                                          "name": "Kedua"}, headers=admin_headers)
    assert res.status_code == 409
    assert res.get_json() == {"ok": False, "error": "Username sudah digunakan"}

    users = [u for u in client.get('/api/users', headers=admin_headers).get_json()['data']
             if u['username'] == 'rina']
    assert len(users) == 1
    assert users[0]['role'] == 'kasir'
    assert users[0]['name'] == 'Pertama'
    assert login(client, 'rina', 'satu').status_code == 200


def test_create_user_validation(client, admin_headers):
    res = client.post('/api/users', json={"username": "x", "password": "y"}, headers=admin_headers)
    assert res.status_code == 400
    res = client.post('/api/users', json={"username": "x", "password": "y", "role": "dokter"},
                      headers=admin_headers)
    assert res.status_code == 400


def test_update_user_password_and_role(client, admin_headers):
    user_id = client.post('/api/users', json={"username": "budi", "password": "lama", "role": "kasir"},
                          headers=admin_headers).get_json()['data']['id']

    res = client.put(f'/api/users/{user_id}', json={"role": "apoteker", "password": "baru"}, headers=admin_headers)
    assert res.status_code == 200
    assert res.get_json()['data']['role'] == 'apoteker'
    assert login(client, 'budi', 'lama').status_code == 401
    assert login(client, 'budi', 'baru').status_code == 200

    # Password kosong diabaikan
    res = client.put(f'/api/users/{user_id}', json={"name": "Budi S", "password": ""}, headers=admin_headers)
    assert res.status_code == 200
    assert login(client, 'budi', 'baru').status_code == 200

    res = client.put(f'/api/users/{user_id}', json={}, headers=admin_headers)
    assert res.status_code == 400


def test_delete_user(client, admin_headers):
    user_id = client.post('/api/users', json={"username": "hapus", "password": "x", "role": "kasir"},
                          headers=admin_headers).get_json()['data']['id']
    assert client.delete(f'/api/users/{user_id}', headers=admin_headers).status_code == 200
    assert client.get(f'/api/users/{user_id}', headers=admin_headers).status_code == 404


def test_admin_cannot_delete_self(client, admin_headers):
    me = client.get('/api/auth/me', headers=admin_headers).get_json()['data']['user']
    res = client.delete(f"/api/users/{me['id']}", headers=admin_headers)
    assert res.status_code == 400
