def test_update_profile(client, auth_headers):
    resp = client.put("/api/auth/user", json={"name": " Alice B ", "phone": "555-0100"}, headers=auth_headers)
    assert resp.status_code == 200
    user = resp.json()["user"]
    assert user["name"] == "Alice B"
    assert user["phone"] == "555-0100"

    assert client.put("/api/auth/user", json={}, headers=auth_headers).status_code == 400
    assert client.put("/api/auth/user", json={"name": "  "}, headers=auth_headers).status_code == 400


def test_upload_photo(client, auth_headers):
    files = {"profileImage": ("me.png", b"\x89PNG fake image bytes", "image/png")}
    resp = client.post("/api/auth/upload", files=files, headers=auth_headers)
    assert resp.status_code == 200
    photo = resp.json()["photo"]
    assert photo.startswith("/uploads/profileImage-")
    assert client.get(photo).content == b"\x89PNG fake image bytes"
    assert client.get("/api/user", headers=auth_headers).json()["photo"] == photo


def test_upload_rejects_non_image(client, auth_headers):
    files = {"profileImage": ("notes.txt", b"hello", "text/plain")}
    assert client.post("/api/auth/upload", files=files, headers=auth_headers).status_code == 400


def test_user_cannot_update_someone_else(client, signup, login, auth_headers):
    other = signup(email="bob@example.com", name="Bob")
    resp = client.put(f"/api/users/update/{other['user']['id']}", json={"name": "Hacked"}, headers=auth_headers)
    assert resp.status_code == 403


def test_update_own_email_and_password(client, auth_headers, login):
    me = client.get("/api/user", headers=auth_headers).json()
    resp = client.put(f"/api/users/update/{me['id']}",
                      json={"email": "New@Example.com", "password": "changed1", "is_admin": True},
                      headers=auth_headers)
    assert resp.status_code == 200
    user = resp.json()["user"]
    assert user["email"] == "new@example.com"
    # only admins may grant admin
    assert user["is_admin"] is False
    login("new@example.com", "changed1")


def test_update_email_conflict(client, signup, auth_headers):
    signup(email="bob@example.com", name="Bob")
    me = client.get("/api/user", headers=auth_headers).json()
    resp = client.put(f"/api/users/update/{me['id']}", json={"email": "bob@example.com"}, headers=auth_headers)
    assert resp.status_code == 409


def test_admin_can_manage_others(client, signup, login, auth_service, llm):
    admin = signup(email="root@example.com", name="Root")
    auth_service.users.update(admin["user"]["id"], is_admin=True)
    admin_headers = login(admin["email"], admin["password"])

    target = signup(email="bob@example.com", name="Bob")
    target_headers = login(target["email"], target["password"])
    client.post("/api/chatbot", json={"prompt": "hello"}, headers=target_headers)

    resp = client.put(f"/api/users/update/{target['user']['id']}", json={"is_admin": True}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["user"]["is_admin"] is True

    resp = client.delete(f"/api/users/delete/{target['user']['id']}", headers=admin_headers)
    assert resp.status_code == 200
    assert client.get("/api/user", headers=target_headers).status_code == 401
    assert client.delete(f"/api/users/delete/{target['user']['id']}", headers=admin_headers).status_code == 404


def test_delete_self(client, auth_headers, conversation_store):
    me = client.get("/api/user", headers=auth_headers).json()
    client.post("/api/conversations", headers=auth_headers)
    resp = client.delete(f"/api/users/delete/{me['id']}", headers=auth_headers)
    assert resp.status_code == 200
    assert conversation_store.list_for_user(me["id"]) == []


def test_list_users_is_admin_only(client, signup, login, auth_service):
    admin = signup(email="root@example.com", name="Root")
    auth_service.users.update(admin["user"]["id"], is_admin=True)
    admin_headers = login(admin["email"], admin["password"])
    bob = signup(email="bob@example.com", name="Bob")
    bob_headers = login(bob["email"], bob["password"])

    resp = client.get("/api/users", headers=bob_headers)
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Forbidden: Insufficient permissions."

    resp = client.get("/api/users", headers=admin_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["count"] == 2
    assert [u["email"] for u in body["users"]] == ["root@example.com", "bob@example.com"]
    assert all("password_hash" not in u for u in body["users"])
