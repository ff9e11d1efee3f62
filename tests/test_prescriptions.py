import pytest


@pytest.fixture
def antibiotic(make_product):
    return make_product(name="Amoxicillin 500mg", stock=30, price=2500, buy_price=1500, requires_prescription=True)


@pytest.fixture
def make_prescription(client, apoteker_headers):
    def _make(medications):
        res = client.post('/api/prescriptions', json={
            "doctor_name": "dr. Andi",
            "patient_name": "Ibu Sulastri",
            "medications": medications,
        }, headers=apoteker_headers)
        assert res.status_code == 201, res.get_json()
        return res.get_json()['data']
    return _make


def test_create_prescription_with_medications(client, kasir_headers, antibiotic, make_prescription):
    prescription = make_prescription([{"product_id": antibiotic['id'], "quantity": 10, "dosage": "3x1"}])
    assert prescription['status'] == 'active'
    assert prescription['date']
    assert prescription['medications'][0]['product_name'] == 'Amoxicillin 500mg'

    res = client.get('/api/prescriptions?status=active', headers=kasir_headers)
    assert [p['id'] for p in res.get_json()['data']] == [prescription['id']]


def test_kasir_cannot_create_prescription(client, kasir_headers):
    res = client.post('/api/prescriptions', json={"doctor_name": "dr. A", "patient_name": "B"},
                      headers=kasir_headers)
    assert res.status_code == 403


def test_prescription_requires_names(client, apoteker_headers):
    res = client.post('/api/prescriptions', json={"doctor_name": "dr. A"}, headers=apoteker_headers)
    assert res.status_code == 400


def test_add_and_replace_medications(client, apoteker_headers, antibiotic, make_product, make_prescription):
    other = make_product(name="Ibuprofen")
    prescription = make_prescription([])

    res = client.post(f"/api/prescriptions/{prescription['id']}/medications",
                      json=[{"product_id": antibiotic['id'], "quantity": 5}], headers=apoteker_headers)
    assert res.status_code == 201
    assert len(res.get_json()['data']['medications']) == 1

    res = client.put(f"/api/prescriptions/{prescription['id']}",
                     json={"patient_name": "Pak Joko", "medications": [{"product_id": other['id'], "quantity": 2}]},
                     headers=apoteker_headers)
    data = res.get_json()['data']
    assert data['patient_name'] == 'Pak Joko'
    assert [m['product_id'] for m in data['medications']] == [other['id']]


def test_prescription_sale_marks_used(client, kasir_headers, apoteker_headers, antibiotic, make_prescription,
                                      get_stock):
    prescription = make_prescription([{"product_id": antibiotic['id'], "quantity": 10}])
    res = client.post('/api/transactions', json={
        "items": [{"product_id": antibiotic['id'], "quantity": 10}],
        "prescription_id": prescription['id'],
    }, headers=kasir_headers)
    assert res.status_code == 201
    assert get_stock(antibiotic['id']) == 20

    data = client.get(f"/api/prescriptions/{prescription['id']}", headers=kasir_headers).get_json()['data']
    assert data['status'] == 'used'

    # Resep terpakai tidak bisa dipakai atau diubah lagi
    res = client.post('/api/transactions', json={
        "items": [{"product_id": antibiotic['id'], "quantity": 1}],
        "prescription_id": prescription['id'],
    }, headers=kasir_headers)
    assert res.status_code == 409
    res = client.put(f"/api/prescriptions/{prescription['id']}", json={"patient_name": "X"},
                     headers=apoteker_headers)
    assert res.status_code == 409


def test_prescription_product_needs_prescription(client, kasir_headers, antibiotic, make_product,
                                                  make_prescription, get_stock):
    res = client.post('/api/transactions', json={"items": [{"product_id": antibiotic['id'], "quantity": 1}]},
                      headers=kasir_headers)
    assert res.status_code == 400

    other = make_product(name="Vitamin C")
    prescription = make_prescription([{"product_id": other['id'], "quantity": 1}])
    res = client.post('/api/transactions', json={
        "items": [{"product_id": antibiotic['id'], "quantity": 1}],
        "prescription_id": prescription['id'],
    }, headers=kasir_headers)
    assert res.status_code == 400
    assert get_stock(antibiotic['id']) == 30

    res = client.post('/api/transactions', json={
        "items": [{"product_id": other['id'], "quantity": 1}],
        "prescription_id": "tidak-ada",
    }, headers=kasir_headers)
    assert res.status_code == 400


def test_status_used_is_irreversible(client, apoteker_headers, make_prescription):
    prescription = make_prescription([])
    url = f"/api/prescriptions/{prescription['id']}/status"

    res = client.put(url, json={"status": "used"}, headers=apoteker_headers)
    assert res.status_code == 200
    assert res.get_json()['data']['status'] == 'used'

    assert client.put(url, json={"status": "active"}, headers=apoteker_headers).status_code == 400
    assert client.put(url, json={"status": "used"}, headers=apoteker_headers).status_code == 200
    data = client.get(f"/api/prescriptions/{prescription['id']}", headers=apoteker_headers).get_json()['data']
    assert data['status'] == 'used'


def test_delete_blocked_when_referenced(client, kasir_headers, apoteker_headers, antibiotic, make_prescription):
    prescription = make_prescription([{"product_id": antibiotic['id'], "quantity": 2}])
    client.post('/api/transactions', json={
        "items": [{"product_id": antibiotic['id'], "quantity": 2}],
        "prescription_id": prescription['id'],
    }, headers=kasir_headers)

    res = client.delete(f"/api/prescriptions/{prescription['id']}", headers=apoteker_headers)
    assert res.status_code == 409
    assert res.get_json()['ok'] is False
    assert client.get(f"/api/prescriptions/{prescription['id']}", headers=apoteker_headers).status_code == 200


def test_delete_unreferenced_prescription(client, apoteker_headers, antibiotic, make_prescription):
    prescription = make_prescription([{"product_id": antibiotic['id'], "quantity": 2}])
    assert client.delete(f"/api/prescriptions/{prescription['id']}", headers=apoteker_headers).status_code == 200
    assert client.get(f"/api/prescriptions/{prescription['id']}", headers=apoteker_headers).status_code == 404
