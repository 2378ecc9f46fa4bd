from common.models import RoleEnum

ADMIN_PAYLOAD = {
    "name": "Admin",
    "email": "admin@example.com",
    "password": "Passw0rd!",
    "role": RoleEnum.ADMIN.value,
}


def auth_header(client, email: str, password: str) -> dict[str, str]:
    response = client.post(
        "/users/login",
        data={"username": email, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def test_user_registration_and_listing(users_client):
    admin_resp = users_client.post("/users/register", json=ADMIN_PAYLOAD)
    assert admin_resp.status_code == 201
    assert admin_resp.json()["role"] == "admin"

    user_resp = users_client.post(
        "/users/register",
        json={"name": "Jane", "email": "Jane@Example.com", "password": "Passw0rd!"},
    )
    assert user_resp.status_code == 201
    assert user_resp.json()["email"] == "jane@example.com"
    assert user_resp.json()["role"] == "user"

    headers = auth_header(users_client, "admin@example.com", "Passw0rd!")
    list_resp = users_client.get("/users", headers=headers)
    assert list_resp.status_code == 200
    assert len(list_resp.json()) == 2

    jane = auth_header(users_client, "jane@example.com", "Passw0rd!")
    assert users_client.get("/users", headers=jane).status_code == 403


def test_only_first_admin_can_self_register(users_client):
    users_client.post("/users/register", json=ADMIN_PAYLOAD)
    second = users_client.post(
        "/users/register",
        json={**ADMIN_PAYLOAD, "email": "other-admin@example.com"},
    )
    assert second.status_code == 403


def test_duplicate_email_and_bad_login(users_client):
    users_client.post("/users/register", json=ADMIN_PAYLOAD)
    duplicate = users_client.post("/users/register", json=ADMIN_PAYLOAD)
    assert duplicate.status_code == 400

    bad_login = users_client.post(
        "/users/login",
        data={"username": "admin@example.com", "password": "wrong-password"},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert bad_login.status_code == 401


def test_read_me(users_client):
    users_client.post("/users/register", json=ADMIN_PAYLOAD)
    headers = auth_header(users_client, "admin@example.com", "Passw0rd!")

    me = users_client.get("/users/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["email"] == "admin@example.com"
    assert users_client.get("/users/me", headers={"Authorization": "Bearer nonsense"}).status_code == 401
