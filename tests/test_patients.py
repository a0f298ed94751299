import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from clinic_manager import database
from clinic_manager.app import create_app


def _sign_in_as(client: TestClient, email: str, password: str = "secret123") -> None:
    client.cookies.clear()
    signup = client.post("/auth/sign-up", json={"email": email, "password": password})
    assert signup.status_code in (201, 409)
    login = client.post("/auth/sign-in", json={"email": email, "password": password})
    assert login.status_code == 200


@pytest.fixture()
def client(tmp_path, monkeypatch):
    """Provide an authenticated TestClient backed by an isolated database."""
    db_path = tmp_path / "test.db"
    monkeypatch.setattr(database, "DB_PATH", db_path)
    app = create_app()
    with TestClient(app) as test_client:
        _sign_in_as(test_client, "doctor@example.com")
        yield test_client


def _patient_payload(**overrides):
    payload = {"name": "Ana Souza", "phone": "11987654321", "email": "ana@example.com"}
    payload.update(overrides)
    return payload


def test_create_and_fetch_patient(client: TestClient):
    created = client.post("/patients", json=_patient_payload())
    assert created.status_code == 201
    body = created.json()
    assert body["success"] is True
    assert body["message"] == "Paciente cadastrado com sucesso"

    fetched = client.get(f"/patients/{body['id']}")
    assert fetched.status_code == 200
    patient = fetched.json()
    assert patient["name"] == "Ana Souza"
    assert patient["phone"] == "11987654321"
    assert patient["email"] == "ana@example.com"
    assert patient["created_by"] == client.get("/auth/me").json()["id"]


def test_patients_listed_newest_first_or_by_name(client: TestClient):
    for name in ("Carla", "ana", "Bruno"):
        response = client.post("/patients", json=_patient_payload(name=name))
        assert response.status_code == 201

    newest_first = [patient["name"] for patient in client.get("/patients").json()]
    assert newest_first == ["Bruno", "ana", "Carla"]

    by_name = [patient["name"] for patient in client.get("/patients", params={"order": "name"}).json()]
    assert by_name == ["ana", "Bruno", "Carla"]

    assert client.get("/patients", params={"order": "phone"}).status_code == 422


def test_update_patient_replaces_fields(client: TestClient):
    patient_id = client.post("/patients", json=_patient_payload()).json()["id"]

    updated = client.put(
        f"/patients/{patient_id}",
        json=_patient_payload(name="Ana Lima", phone="21999998888"),
    )
    assert updated.status_code == 200
    assert updated.json()["message"] == "Paciente atualizado com sucesso"

    body = client.get(f"/patients/{patient_id}").json()
    assert body["name"] == "Ana Lima"
    assert body["phone"] == "21999998888"
    assert body["email"] == "ana@example.com"


def test_delete_patient(client: TestClient):
    patient_id = client.post("/patients", json=_patient_payload()).json()["id"]

    deleted = client.delete(f"/patients/{patient_id}")
    assert deleted.status_code == 200
    assert deleted.json()["message"] == "Paciente excluído com sucesso"
    assert client.get(f"/patients/{patient_id}").status_code == 404
    assert client.delete(f"/patients/{patient_id}").status_code == 404


def test_patient_validation_messages(client: TestClient):
    short_name = client.post("/patients", json=_patient_payload(name=" A "))
    assert short_name.status_code == 422
    assert any("O nome deve ter pelo menos 2 caracteres" in err["msg"] for err in short_name.json()["detail"])

    short_phone = client.post("/patients", json=_patient_payload(phone="12345"))
    assert short_phone.status_code == 422
    assert any("O telefone deve ter pelo menos 10 dígitos" in err["msg"] for err in short_phone.json()["detail"])

    bad_email = client.post("/patients", json=_patient_payload(email="not-an-email"))
    assert bad_email.status_code == 422


def test_patients_are_scoped_to_their_owner(client: TestClient):
    patient_id = client.post("/patients", json=_patient_payload()).json()["id"]

    _sign_in_as(client, "other@example.com")
    assert client.get("/patients").json() == []
    assert client.get(f"/patients/{patient_id}").status_code == 404
    assert client.put(f"/patients/{patient_id}", json=_patient_payload()).status_code == 404
    assert client.delete(f"/patients/{patient_id}").status_code == 404

    _sign_in_as(client, "doctor@example.com")
    assert [patient["id"] for patient in client.get("/patients").json()] == [patient_id]


def test_patient_routes_require_session(client: TestClient):
    client.cookies.clear()
    response = client.get("/patients")
    assert response.status_code == 401
    assert response.json()["detail"] == "Not authenticated"


def test_store_errors_surface_with_title(client: TestClient, monkeypatch):
    def broken_list(owner_id, order="created_at"):
        raise database.RecordStoreError("database is locked")

    monkeypatch.setattr(database, "list_patients", broken_list)
    response = client.get("/patients")
    assert response.status_code == 400
    assert response.json()["detail"] == {
        "title": "Erro ao carregar pacientes",
        "description": "database is locked",
    }
