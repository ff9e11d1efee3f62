import datetime

import pytest

from apotek import create_app, db
from apotek.models import User

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SECRET_KEY': 'test-secret-key-untuk-pengujian-apotek',
    'JWT_SECRET_KEY': 'test-jwt-secret-key-untuk-pengujian-apotek',
}


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


def login(client, username, password):
    return client.post('/api/auth/login', json={"username": username, "password": password})


@pytest.fixture
def app():
    app = create_app(TEST_CONFIG)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers(client):
    res = login(client, 'admin', '1234')
    return auth_header(res.get_json()['data']['token'])


@pytest.fixture
def make_user(app, client):
    """Buat pengguna langsung di database lalu login, mengembalikan header Authorization."""
    def _make(username, role, password='rahasia'):
        with app.app_context():
            user = User(username=username, role=role, name=username.title())
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
        return auth_header(login(client, username, password).get_json()['data']['token'])
    return _make


@pytest.fixture
def apoteker_headers(make_user):
    return make_user('apoteker1', 'apoteker')


@pytest.fixture
def kasir_headers(make_user):
    return make_user('kasir1', 'kasir')


@pytest.fixture
def make_product(client, admin_headers):
    def _make(**overrides):
        payload = {
            "name": "Paracetamol 500mg",
            "category": "Analgesik",
            "stock": 10,
            "min_stock": 5,
            "price": 5000,
            "buy_price": 3000,
            "expiry_date": (datetime.date.today() + datetime.timedelta(days=365)).isoformat(),
        }
        payload.update(overrides)
        res = client.post('/api/products', json=payload, headers=admin_headers)
        assert res.status_code == 201, res.get_json()
        return res.get_json()['data']
    return _make


@pytest.fixture
def get_stock(client, admin_headers):
    def _get(product_id):
        return client.get(f'/api/products/{product_id}', headers=admin_headers).get_json()['data']['stock']
    return _get
