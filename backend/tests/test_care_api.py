from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.config import QUEUE_SCOPE_ALL, Settings
from app.main import create_app

PATIENT_LOCATION = {'lat': 12.9352, 'lng': 77.6245}


def _client(tmp_path: Path, **overrides) -> TestClient:
    settings = Settings(db_path=tmp_path / 'care.db', secret_key='test-secret', **overrides)
    return TestClient(create_app(settings))


def _login(client: TestClient, username: str, password: str, role: str, location: dict | None = None) -> str:
    body = {'username': username, 'password': password, 'role': role}
    if location is not None:
        body['location'] = location
    resp = client.post('/api/login', json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()['token']


def _auth(token: str) -> dict:
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def client(tmp_path: Path):
    with _client(tmp_path) as c:
        yield c


def test_health(client: TestClient):
    assert client.get('/health').json() == {'status': 'ok'}


def test_sos_routes_to_default_hospital_and_queues_high(client: TestClient):
    resp = client.post(
        '/api/sos-request',
        json={'patientName': 'Asha', 'reason': 'chest pain', 'criticality': 'LOW', 'location': PATIENT_LOCATION},
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data['hospitalName'] == 'HospitalAdmin'
    assert data['distance'] == pytest.approx(5.18, abs=0.05)

    token = _login(client, 'HospitalAdmin', 'admin123', 'hospital')
    queue = client.get('/api/doctor-requests', headers=_auth(token)).json()
    assert len(queue) == 1
    assert queue[0]['criticality'] == 'HIGH'
    assert queue[0]['type'] == 'SOS'
    assert queue[0]['status'] == 'PENDING'
    assert queue[0]['reason'] == 'SOS Alert: chest pain'


def test_doctor_request_defaults_to_low_and_orders_queue(client: TestClient):
    for name, level in [('Ravi', None), ('Meera', 'high'), ('Kiran', 'medium')]:
        body = {'patientName': name, 'reason': 'consult', 'location': PATIENT_LOCATION}
        if level:
            body['criticality'] = level
        assert client.post('/api/doctor-request', json=body).status_code == 201

    token = _login(client, 'HospitalAdmin', 'admin123', 'hospital')
    queue = client.get('/api/doctor-requests', headers=_auth(token)).json()
    assert [(r['patientName'], r['criticality']) for r in queue] == [('Meera', 'HIGH'), ('Kiran', 'MEDIUM'), ('Ravi', 'LOW')]

    summary = client.get('/api/doctor-requests/summary', headers=_auth(token)).json()
    assert summary == {'pending': 3, 'sos_alerts': 0, 'doctor_queue': 3, 'high_priority': 1}


def test_request_validation_errors(client: TestClient):
    missing = client.post('/api/doctor-request', json={'patientName': 'Ravi', 'reason': 'x'})
    assert missing.status_code == 422
    assert missing.json()['code'] == 'invalid_request'

    bad_lat = client.post(
        '/api/doctor-request',
        json={'patientName': 'Ravi', 'reason': 'x', 'location': {'lat': 'north', 'lng': 77.6}},
    )
    assert bad_lat.status_code == 422
    assert 'latitude' in bad_lat.json()['detail']

    bad_level = client.post(
        '/api/doctor-request',
        json={'patientName': 'Ravi', 'reason': 'x', 'criticality': 'SEVERE', 'location': PATIENT_LOCATION},
    )
    assert bad_level.status_code == 422


def test_sos_without_hospitals_is_service_unavailable(tmp_path: Path):
    with _client(tmp_path, seed_default_accounts=False) as client:
        resp = client.post('/api/sos-request', json={'patientName': 'Asha', 'reason': 'fall', 'location': PATIENT_LOCATION})
    assert resp.status_code == 503
    assert resp.json()['code'] == 'no_facility'
    assert 'call emergency services directly' in resp.json()['detail']


def test_queue_requires_hospital_token(client: TestClient):
    assert client.get('/api/doctor-requests').status_code == 401
    admin = _login(client, 'admin', 'password123', 'admin')
    assert client.get('/api/doctor-requests', headers=_auth(admin)).status_code == 403


def test_registration_approval_and_login_location_refresh(client: TestClient):
    reg = client.post('/api/register/hospital', json={'username': 'Koramangala Clinic', 'password': 'secret1'})
    assert reg.status_code == 201
    facility_id = reg.json()['id']
    assert reg.json()['status'] == 'PENDING'
    assert client.post('/api/register/hospital', json={'username': 'Koramangala Clinic', 'password': 'secret1'}).status_code == 409

    clinic = _login(client, 'Koramangala Clinic', 'secret1', 'hospital', location={'lat': 12.9350, 'lng': 77.6240})

    # Not approved yet: the patient still goes to the default hospital.
    first = client.post('/api/doctor-request', json={'patientName': 'Ravi', 'reason': 'x', 'location': PATIENT_LOCATION})
    assert first.json()['hospitalName'] == 'HospitalAdmin'

    assert client.patch(f'/api/hospitals/{facility_id}/approve', headers=_auth(clinic)).status_code == 403
    admin = _login(client, 'admin', 'password123', 'admin')
    approved = client.patch(f'/api/hospitals/{facility_id}/approve', headers=_auth(admin))
    assert approved.status_code == 200
    assert client.patch('/api/hospitals/9999/approve', headers=_auth(admin)).status_code == 404

    second = client.post('/api/doctor-request', json={'patientName': 'Meera', 'reason': 'y', 'location': PATIENT_LOCATION})
    assert second.json()['hospitalName'] == 'Koramangala Clinic'
    assert second.json()['distance'] < 0.1

    # Each hospital sees only the requests routed to it.
    clinic_queue = client.get('/api/doctor-requests', headers=_auth(clinic)).json()
    assert [r['patientName'] for r in clinic_queue] == ['Meera']
    default = _login(client, 'HospitalAdmin', 'admin123', 'hospital')
    assert [r['patientName'] for r in client.get('/api/doctor-requests', headers=_auth(default)).json()] == ['Ravi']


def test_all_scope_shows_every_pending_request(tmp_path: Path):
    with _client(tmp_path, queue_scope=QUEUE_SCOPE_ALL) as client:
        client.post('/api/register/hospital', json={'username': 'Other', 'password': 'secret1'})
        client.post('/api/doctor-request', json={'patientName': 'Ravi', 'reason': 'x', 'location': PATIENT_LOCATION})
        other = _login(client, 'Other', 'secret1', 'hospital')
        queue = client.get('/api/doctor-requests', headers=_auth(other)).json()
    assert [r['patientName'] for r in queue] == ['Ravi']


def test_resolve_creates_prescription_and_pdf(client: TestClient):
    client.post('/api/doctor-request', json={'patientName': 'Ravi', 'reason': 'fever', 'criticality': 'MEDIUM', 'location': PATIENT_LOCATION})
    token = _login(client, 'HospitalAdmin', 'admin123', 'hospital')
    [pending] = client.get('/api/doctor-requests', headers=_auth(token)).json()

    resolved = client.put(
        f"/api/doctor-request/{pending['id']}/resolve",
        json={'prescription': 'Paracetamol 500mg twice daily', 'authorName': 'Dr. Rao'},
        headers=_auth(token),
    )
    assert resolved.status_code == 200
    assert resolved.json()['ok'] is True

    again = client.put(
        f"/api/doctor-request/{pending['id']}/resolve",
        json={'prescription': 'again'},
        headers=_auth(token),
    )
    assert again.status_code == 404
    assert again.json()['code'] == 'not_found'

    assert client.get('/api/doctor-requests', headers=_auth(token)).json() == []

    prescriptions = client.get('/api/prescriptions/Ravi', headers=_auth(token)).json()
    assert len(prescriptions) == 1
    assert prescriptions[0]['authorName'] == 'Dr. Rao'
    assert prescriptions[0]['requestId'] == pending['id']

    pdf = client.get(f"/api/prescriptions/{prescriptions[0]['id']}/pdf", headers=_auth(token))
    assert pdf.status_code == 200
    assert pdf.headers['content-type'] == 'application/pdf'
    assert pdf.content.startswith(b'%PDF')


def test_resolve_defaults_author_to_logged_in_hospital(client: TestClient):
    client.post('/api/doctor-request', json={'patientName': 'Ravi', 'reason': 'fever', 'location': PATIENT_LOCATION})
    token = _login(client, 'HospitalAdmin', 'admin123', 'hospital')

    resp = client.put('/api/doctor-request/1/resolve', json={'prescription': 'Rest'}, headers=_auth(token))

    assert resp.status_code == 200
    assert client.get('/api/prescriptions/Ravi', headers=_auth(token)).json()[0]['authorName'] == 'HospitalAdmin'


def test_hospital_cannot_resolve_request_routed_elsewhere(client: TestClient):
    client.post('/api/register/hospital', json={'username': 'Other', 'password': 'secret1'})
    client.post('/api/doctor-request', json={'patientName': 'Ravi', 'reason': 'fever', 'location': PATIENT_LOCATION})
    other = _login(client, 'Other', 'secret1', 'hospital')

    resp = client.put('/api/doctor-request/1/resolve', json={'prescription': 'Rest'}, headers=_auth(other))

    assert resp.status_code == 404
    assert resp.json()['code'] == 'not_found'
    default = _login(client, 'HospitalAdmin', 'admin123', 'hospital')
    assert [r['patientName'] for r in client.get('/api/doctor-requests', headers=_auth(default)).json()] == ['Ravi']
    admin = _login(client, 'admin', 'password123', 'admin')
    assert client.get('/api/prescriptions/Ravi', headers=_auth(admin)).json() == []


def test_prescriptions_require_token(client: TestClient):
    assert client.get('/api/prescriptions/Ravi').status_code == 401
    assert client.get('/api/prescriptions/1/pdf').status_code == 401


def test_prescriptions_are_visible_to_routed_hospital_and_admin_only(client: TestClient):
    client.post('/api/register/hospital', json={'username': 'Other', 'password': 'secret1'})
    client.post('/api/doctor-request', json={'patientName': 'Ravi', 'reason': 'fever', 'location': PATIENT_LOCATION})
    default = _login(client, 'HospitalAdmin', 'admin123', 'hospital')
    client.put('/api/doctor-request/1/resolve', json={'prescription': 'Rest'}, headers=_auth(default))

    other = _login(client, 'Other', 'secret1', 'hospital')
    assert client.get('/api/prescriptions/Ravi', headers=_auth(other)).json() == []
    assert client.get('/api/prescriptions/1/pdf', headers=_auth(other)).status_code == 404

    admin = _login(client, 'admin', 'password123', 'admin')
    assert len(client.get('/api/prescriptions/Ravi', headers=_auth(admin)).json()) == 1
    assert client.get('/api/prescriptions/1/pdf', headers=_auth(admin)).status_code == 200


def test_sos_body_errors_still_advise_calling_emergency_services(client: TestClient):
    resp = client.post('/api/sos-request', json={'patientName': 'Asha', 'reason': None, 'location': PATIENT_LOCATION})

    assert resp.status_code == 422
    assert resp.json()['code'] == 'invalid_request'
    assert 'reason' in resp.json()['detail']
    assert resp.json()['detail'].endswith('Please call emergency services directly.')


def test_doctor_request_body_errors_have_no_sos_advice(client: TestClient):
    resp = client.post('/api/doctor-request', json={'patientName': 'Ravi', 'reason': None, 'location': PATIENT_LOCATION})

    assert resp.status_code == 422
    assert resp.json()['code'] == 'invalid_request'
    assert 'emergency services' not in resp.json()['detail']


def test_sos_store_failure_returns_500_with_advice(tmp_path: Path):
    with _client(tmp_path) as client:
        client.app.state.store.close()
        resp = client.post('/api/sos-request', json={'patientName': 'Asha', 'reason': 'fall', 'location': PATIENT_LOCATION})

    assert resp.status_code == 500
    assert resp.json()['code'] == 'store_closed'
    assert resp.json()['detail'] == 'Internal server error. Please try again. Please call emergency services directly.'


def test_sos_unexpected_error_returns_500_with_advice(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    settings = Settings(db_path=tmp_path / 'care.db', secret_key='test-secret')
    app = create_app(settings)

    def broken_dispatch(*args, **kwargs):
        raise RuntimeError('boom')

    monkeypatch.setattr(app.state.dispatcher, 'dispatch', broken_dispatch)
    with TestClient(app, raise_server_exceptions=False) as client:
        resp = client.post('/api/sos-request', json={'patientName': 'Asha', 'reason': 'fall', 'location': PATIENT_LOCATION})

    assert resp.status_code == 500
    assert resp.json()['code'] == 'server_error'
    assert 'boom' not in resp.json()['detail']
    assert resp.json()['detail'].endswith('Please call emergency services directly.')


def test_registration_rejects_blank_username(client: TestClient):
    resp = client.post('/api/register/hospital', json={'username': '   ', 'password': 'secret1'})

    assert resp.status_code == 422
    assert resp.json()['code'] == 'invalid_request'
    assert 'username' in resp.json()['detail']
