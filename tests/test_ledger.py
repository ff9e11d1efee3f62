def make_employee(client, headers, **overrides):
    payload = {"name": "Rina", "position": "Asisten Apoteker", "base_salary": 3500000,
               "start_date": "2024-01-15"}
    payload.update(overrides)
    res = client.post('/api/employees', json=payload, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()['data']


def test_employee_and_payroll(client, admin_headers):
    employee = make_employee(client, admin_headers)
    assert employee['status'] == 'active'
    assert employee['bonus'] == 0

    res = client.post('/api/payrolls', json={"employee_id": employee['id'], "period_month": "2024-05",
                                             "total_salary": 3750000, "payment_date": "2024-05-28"},
                      headers=admin_headers)
    assert res.status_code == 201
    payroll = res.get_json()['data']
    assert payroll['employee_name'] == 'Rina'
    assert payroll['position'] == 'Asisten Apoteker'

    res = client.get(f"/api/payrolls?employee_id={employee['id']}&from=2024-05-01&to=2024-05-31",
                     headers=admin_headers)
    assert [p['id'] for p in res.get_json()['data']] == [payroll['id']]
    res = client.get('/api/payrolls?from=2024-06-01', headers=admin_headers)
    assert res.get_json()['data'] == []

    # Karyawan dengan riwayat gaji tidak bisa dihapus
    assert client.delete(f"/api/employees/{employee['id']}", headers=admin_headers).status_code == 409
    res = client.put(f"/api/employees/{employee['id']}", json={"status": "inactive"}, headers=admin_headers)
    assert res.get_json()['data']['status'] == 'inactive'
    res = client.get('/api/employees?status=active', headers=admin_headers)
    assert res.get_json()['data'] == []


def test_payroll_validation(client, admin_headers):
    employee = make_employee(client, admin_headers)
    base = {"employee_id": employee['id'], "total_salary": 1, "payment_date": "2024-05-28"}
    res = client.post('/api/payrolls', json=dict(base, period_month="2024-13"), headers=admin_headers)
    assert res.status_code == 400
    res = client.post('/api/payrolls', json=dict(base, period_month="2024-05", employee_id="tidak-ada"),
                      headers=admin_headers)
    assert res.status_code == 400


def test_employee_status_validated(client, admin_headers):
    res = client.post('/api/employees', json={"name": "A", "position": "B", "base_salary": 1,
                                              "start_date": "2024-01-01", "status": "cuti"},
                      headers=admin_headers)
    assert res.status_code == 400


def test_expenses(client, admin_headers):
    me = client.get('/api/auth/me', headers=admin_headers).get_json()['data']['user']
    res = client.post('/api/expenses', json={"category": "Listrik", "description": "PLN", "amount": 750000,
                                             "date": "2024-05-10"}, headers=admin_headers)
    assert res.status_code == 201
    expense = res.get_json()['data']
    assert expense['created_by'] == str(me['id'])

    res = client.get('/api/expenses?category=Listrik&from=2024-05-01&to=2024-05-31', headers=admin_headers)
    assert len(res.get_json()['data']) == 1
    res = client.get('/api/expenses?category=Air', headers=admin_headers)
    assert res.get_json()['data'] == []


def test_ledger_transfer_and_summary(client, admin_headers):
    collection = client.post('/api/collections', json={"date": "2024-05-02", "amount": 2500000},
                             headers=admin_headers).get_json()['data']
    client.post('/api/collections', json={"date": "2024-05-03", "amount": 500000}, headers=admin_headers)
    client.post('/api/payments', json={"date": "2024-05-04", "amount": 1000000}, headers=admin_headers)

    summary = client.get('/api/collections/summary', headers=admin_headers).get_json()['data']
    assert summary == {"inkaso": 3000000, "bayar": 1000000, "tagihan": 2000000}

    res = client.post(f"/api/collections/{collection['id']}/transfer", headers=admin_headers)
    assert res.status_code == 201
    payment = res.get_json()['data']
    assert payment['amount'] == 2500000
    assert payment['date'] == '2024-05-02'
    assert client.get(f"/api/collections/{collection['id']}", headers=admin_headers).status_code == 404

    summary = client.get('/api/collections/summary', headers=admin_headers).get_json()['data']
    assert summary == {"inkaso": 500000, "bayar": 3500000, "tagihan": -3000000}

    res = client.post(f"/api/payments/{payment['id']}/reverse", headers=admin_headers)
    assert res.status_code == 201
    summary = client.get('/api/collections/summary?from=2024-05-01&to=2024-05-02',
                         headers=admin_headers).get_json()['data']
    assert summary == {"inkaso": 2500000, "bayar": 0, "tagihan": 2500000}


def test_ledger_admin_only(client, apoteker_headers):
    assert client.get('/api/collections', headers=apoteker_headers).status_code == 403
    assert client.post('/api/payments', json={"date": "2024-05-04", "amount": 1},
                       headers=apoteker_headers).status_code == 403
