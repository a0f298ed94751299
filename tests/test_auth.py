import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from clinic_manager import database
from clinic_manager.app import create_app
from clinic_manager.auth import create_reset_token, read_session_token, translate_auth_error

EMAIL = "doctor@example.com"
PASSWORD = "secret123"


@pytest.fixture()
def client(tmp_path, monkeypatch):
    """Provide an anonymous TestClient backed by an isolated database."""
    db_path = tmp_path / "test.db"
    monkeypatch.setattr(database, "DB_PATH", db_path)
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


def _sign_up(client: TestClient, email: str = EMAIL, password: str = PASSWORD):
    return client.post("/auth/sign-up", json={"email": email, "password": password})


def _sign_in(client: TestClient, email: str = EMAIL, password: str = PASSWORD):
    return client.post("/auth/sign-in", json={"email": email, "password": password})


def test_sign_up_does_not_start_a_session(client: TestClient):
    response = _sign_up(client)
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Cadastro realizado com sucesso"
    assert body["user"]["email"] == EMAIL
    assert "password_hash" not in body["user"]
    assert client.get("/auth/session").json() == {"authenticated": False, "user": None}


def test_duplicate_sign_up_is_rejected(client: TestClient):
    _sign_up(client)
    duplicate = _sign_up(client, email="Doctor@Example.com")
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["description"] == (
        "E-mail já cadastrado. Por favor, faça login ou use a opção de recuperar senha."
    )


def test_sign_up_validates_password_and_email(client: TestClient):
    short = _sign_up(client, password="12345")
    assert short.status_code == 422
    assert any("A senha deve ter pelo menos 6 caracteres" in err["msg"] for err in short.json()["detail"])
    assert _sign_up(client, email="not-an-email").status_code == 422


def test_sign_in_and_sign_out(client: TestClient):
    _sign_up(client)
    response = _sign_in(client)
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Login realizado com sucesso"
    assert body["description"] == "Bem-vindo ao Clinic Manager!"
    assert read_session_token(client.cookies.get("clinic_session")) == body["user"]["id"]

    status = client.get("/auth/session").json()
    assert status["authenticated"] is True
    assert status["user"]["email"] == EMAIL
    assert client.get("/auth/me").json()["email"] == EMAIL

    signed_out = client.post("/auth/sign-out")
    assert signed_out.status_code == 200
    assert client.get("/auth/session").json()["authenticated"] is False
    assert client.get("/auth/me").status_code == 401


def test_sign_in_with_wrong_password(client: TestClient):
    _sign_up(client)
    response = _sign_in(client, password="wrong-password")
    assert response.status_code == 401
    assert response.json()["detail"] == {
        "title": "Erro ao entrar",
        "description": "E-mail ou senha incorretos",
    }
    assert _sign_in(client, email="nobody@example.com").status_code == 401


def test_tampered_session_cookie_is_ignored(client: TestClient):
    client.cookies.set("clinic_session", "not-a-valid-token")
    assert client.get("/auth/session").json()["authenticated"] is False
    assert client.get("/patients").status_code == 401


def test_change_password(client: TestClient):
    _sign_up(client)
    _sign_in(client)

    mismatch = client.post(
        "/auth/change-password",
        json={"current_password": PASSWORD, "new_password": "novasenha", "confirm_password": "outrasenha"},
    )
    assert mismatch.status_code == 422
    assert any("As senhas não coincidem" in err["msg"] for err in mismatch.json()["detail"])

    too_short = client.post(
        "/auth/change-password",
        json={"current_password": PASSWORD, "new_password": "abc", "confirm_password": "abc"},
    )
    assert too_short.status_code == 422

    changed = client.post(
        "/auth/change-password",
        json={"current_password": PASSWORD, "new_password": "novasenha", "confirm_password": "novasenha"},
    )
    assert changed.status_code == 200
    assert changed.json()["message"] == "Senha alterada com sucesso"
    assert changed.json()["description"] == "Sua senha foi atualizada."

    client.cookies.clear()
    assert _sign_in(client).status_code == 401
    assert _sign_in(client, password="novasenha").status_code == 200


def test_change_password_requires_session(client: TestClient):
    response = client.post(
        "/auth/change-password",
        json={"current_password": PASSWORD, "new_password": "novasenha", "confirm_password": "novasenha"},
    )
    assert response.status_code == 401


def test_password_reset_flow(client: TestClient):
    _sign_up(client)

    for email in (EMAIL, "unknown@example.com"):
        requested = client.post("/auth/reset-password", json={"email": email})
        assert requested.status_code == 202
        assert requested.json()["message"] == "E-mail de recuperação enviado"

    token = create_reset_token(database.get_user_by_email(EMAIL))
    confirmed = client.post("/auth/reset-password/confirm", json={"token": token, "new_password": "redefinida"})
    assert confirmed.status_code == 200
    assert _sign_in(client, password="redefinida").status_code == 200

    reused = client.post("/auth/reset-password/confirm", json={"token": token, "new_password": "outra-senha"})
    assert reused.status_code == 400
    assert reused.json()["detail"]["description"] == "Link de recuperação inválido ou expirado"

    garbage = client.post("/auth/reset-password/confirm", json={"token": "garbage", "new_password": "outra-senha"})
    assert garbage.status_code == 400


def test_translate_auth_error():
    assert translate_auth_error("Invalid login credentials") == "E-mail ou senha incorretos"
    assert translate_auth_error("User already registered") == "E-mail já cadastrado"
    assert translate_auth_error("Something unexpected") == "Something unexpected"
    assert translate_auth_error(None) == "Ocorreu um erro. Tente novamente."


def test_navigation_without_session(client: TestClient):
    root = client.get("/", follow_redirects=False)
    assert root.status_code == 307
    assert root.headers["location"] == "/login"

    login = client.get("/login")
    assert login.status_code == 200
    assert login.json()["modes"] == ["login", "register", "reset"]

    callback = client.get("/auth/callback", follow_redirects=False)
    assert callback.headers["location"] == "/"

    assert client.get("/dashboard").status_code == 401
    html = client.get("/dashboard", headers={"accept": "text/html"}, follow_redirects=False)
    assert html.status_code == 307
    assert html.headers["location"] == "/login?next=%2Fdashboard"


def test_navigation_with_session(client: TestClient):
    _sign_up(client)
    _sign_in(client)

    root = client.get("/", follow_redirects=False)
    assert root.headers["location"] == "/dashboard"
    assert client.get("/auth/callback", follow_redirects=False).headers["location"] == "/dashboard"
    assert client.get("/login", params={"next": "/patients"}, follow_redirects=False).headers["location"] == "/patients"
    assert (
        client.get("/login", params={"next": "//evil.example"}, follow_redirects=False).headers["location"]
        == "/dashboard"
    )

    dashboard = client.get("/dashboard")
    assert dashboard.status_code == 200
    assert dashboard.json() == {
        "email": EMAIL,
        "greeting": f"Olá, {EMAIL}",
        "sections": ["patients", "appointments", "reports", "changePassword"],
    }


def test_health(client: TestClient):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["version"]
