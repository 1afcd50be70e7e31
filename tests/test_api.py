from unittest.mock import MagicMock, patch

from auth import SESSION_COOKIE, create_access_token
from storage import MAX_FILE_SIZE


def register(client, name="Ada Lovelace", email="ada@college.edu", password="s3cret-pass"):
    return client.post("/api/auth/register", json={"name": name, "email": email, "password": password})


class TestAuth:
    def test_register_sets_session_cookie_and_needs_onboarding(self, client):
        res = register(client)

        assert res.status_code == 200
        body = res.json()
        assert body["needsOnboarding"] is True
        assert SESSION_COOKIE in res.cookies

        me = client.get("/api/auth/me")
        assert me.status_code == 200
        assert me.json()["name"] == "Ada Lovelace"
        assert "password" not in me.json()

    def test_duplicate_registration_is_rejected(self, client):
        register(client)
        assert register(client).status_code == 400

    def test_login_with_wrong_password(self, client):
        register(client)
        res = client.post("/api/auth/login", json={"email": "ada@college.edu", "password": "nope"})
        assert res.status_code == 400

    def test_login_then_logout(self, client):
        register(client)
        client.cookies.clear()

        res = client.post("/api/auth/login", json={"email": "ada@college.edu", "password": "s3cret-pass"})
        assert res.status_code == 200
        assert client.get("/api/auth/me").status_code == 200

        client.post("/api/auth/logout")
        client.cookies.clear()
        assert client.get("/api/auth/me").status_code == 401

    def test_invalid_token_is_rejected(self, client):
        res = client.get("/api/users", headers={"Authorization": "Bearer not-a-token"})
        assert res.status_code == 401

    def test_token_for_deleted_user_is_rejected(self, client):
        token = create_access_token({"sub": "nobody"})
        res = client.get("/api/users", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401


class TestSessionGate:
    def test_protected_page_without_cookie_redirects_to_login(self, client):
        res = client.get("/chats/someone", follow_redirects=False)
        assert res.status_code == 307
        assert res.headers["location"] == "/login"

    def test_public_paths_pass(self, client):
        assert client.get("/").status_code == 200


class TestProfiles:
    def test_update_and_discover(self, client, make_user, auth_headers):
        me = make_user("Me")
        make_user("Ana", projectInterests=["IoT"], teamStatus="looking_for_team")
        make_user("Ben", projectInterests=["FinTech"], teamStatus="in_team")

        res = client.put("/api/profile", json={"bio": "hi", "teamStatus": "looking_for_team"}, headers=auth_headers(me))
        assert res.status_code == 200
        assert res.json()["onboardingCompleted"] is True

        found = client.get("/api/users", params={"teamStatus": "looking_for_team"}, headers=auth_headers(me))
        assert [u["name"] for u in found.json()] == ["Ana"]

    def test_invalid_profile_update(self, client, make_user, auth_headers):
        me = make_user("Me")
        res = client.put("/api/profile", json={"experienceLevel": "wizard"}, headers=auth_headers(me))
        assert res.status_code == 422

    def test_unknown_user_is_404(self, client, make_user, auth_headers):
        me = make_user("Me")
        assert client.get("/api/users/missing", headers=auth_headers(me)).status_code == 404


class TestPhotos:
    def test_rejects_wrong_type(self, client, make_user, auth_headers):
        me = make_user("Me")
        res = client.post(
            "/api/profile/photo",
            files={"photo": ("doc.gif", b"GIF89a", "image/gif")},
            headers=auth_headers(me),
        )
        assert res.status_code == 422
        assert res.json()["kind"] == "validation_failure"

    def test_rejects_oversized_file(self, client, make_user, auth_headers):
        me = make_user("Me")
        res = client.post(
            "/api/profile/photo",
            files={"photo": ("big.png", b"0" * (MAX_FILE_SIZE + 1), "image/png")},
            headers=auth_headers(me),
        )
        assert res.status_code == 422

    def test_upload_and_fetch(self, client, store, make_user, auth_headers):
        me = make_user("Me")
        fs = MagicMock()
        fs.find.return_value = []
        stored = MagicMock()
        stored.read.return_value = b"\x89PNG"
        stored.metadata = {"contentType": "image/png"}
        fs.get_last_version.return_value = stored

        with patch("storage.gridfs.GridFS", return_value=fs):
            res = client.post(
                "/api/profile/photo",
                files={"photo": ("me.png", b"\x89PNG", "image/png")},
                headers=auth_headers(me),
            )
            photo = client.get(f"/api/photos/{me}")

        assert res.json() == {"photoUrl": f"/api/photos/{me}"}
        assert store.get_document("user", me)["photoUrl"] == f"/api/photos/{me}"
        fs.put.assert_called_once()
        assert fs.put.call_args.kwargs["filename"] == f"profile-photos/{me}"
        assert photo.content == b"\x89PNG"
        assert photo.headers["content-type"] == "image/png"


class TestMessages:
    def test_send_and_read_both_directions(self, client, make_user, auth_headers):
        alice, bob = make_user("Alice"), make_user("Bob")

        sent = client.post("/api/messages", json={"receiverId": bob, "content": "hi"}, headers=auth_headers(alice))
        assert sent.status_code == 200
        client.post("/api/messages", json={"receiverId": alice, "content": "hey"}, headers=auth_headers(bob))

        mine = client.get(f"/api/messages/{bob}", headers=auth_headers(alice)).json()
        theirs = client.get(f"/api/messages/{alice}", headers=auth_headers(bob)).json()
        assert [m["content"] for m in mine] == ["hi", "hey"]
        assert mine == theirs

    def test_blank_message_is_a_validation_notice(self, client, store, make_user, auth_headers):
        alice, bob = make_user("Alice"), make_user("Bob")
        res = client.post("/api/messages", json={"receiverId": bob, "content": "   "}, headers=auth_headers(alice))

        assert res.status_code == 422
        assert res.json()["kind"] == "validation_failure"
        assert store.get_documents("message") == []

    def test_conversation_list(self, client, make_user, auth_headers, insert_message):
        alice, bob, carol = make_user("Alice"), make_user("Bob"), make_user("Carol")
        insert_message(alice, bob, "A to B", 1)
        insert_message(alice, carol, "A to C", 2)
        insert_message(bob, alice, "B to A", 3)

        res = client.get("/api/conversations", headers=auth_headers(alice))

        assert [(c["partnerId"], c["lastMessage"]) for c in res.json()] == [(bob, "B to A"), (carol, "A to C")]


class TestConnections:
    def test_duplicate_request_is_a_409_notice(self, client, make_user, auth_headers):
        alice, bob = make_user("Alice"), make_user("Bob")

        first = client.post("/api/connections", json={"toUserId": bob, "message": "hi"}, headers=auth_headers(alice))
        second = client.post("/api/connections", json={"toUserId": bob, "message": "hello"}, headers=auth_headers(alice))

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["kind"] == "duplicate_request"
        active = client.get(f"/api/connections/active/{bob}", headers=auth_headers(alice)).json()
        assert active == {"active": True}

    def test_accept_flow(self, client, make_user, auth_headers):
        alice, bob = make_user("Alice"), make_user("Bob")
        conn = client.post("/api/connections", json={"toUserId": bob}, headers=auth_headers(alice)).json()

        incoming = client.get("/api/connections", params={"direction": "incoming"}, headers=auth_headers(bob)).json()
        assert [c["id"] for c in incoming] == [conn["id"]]

        denied = client.post(f"/api/connections/{conn['id']}/status", json={"status": "accepted"}, headers=auth_headers(alice))
        assert denied.status_code == 403

        ok = client.post(f"/api/connections/{conn['id']}/status", json={"status": "accepted"}, headers=auth_headers(bob))
        assert ok.json()["status"] == "accepted"


    def test_unknown_connection_is_404(self, client, make_user, auth_headers):
        bob = make_user("Bob")

        res = client.post("/api/connections/missing/status", json={"status": "accepted"}, headers=auth_headers(bob))

        assert res.status_code == 404
        assert res.json()["kind"] == "not_found"


class TestLiveStreams:
    def test_chat_stream_pushes_snapshots_and_accepts_sends(self, client, store, make_user):
        alice, bob = make_user("Alice"), make_user("Bob")
        alice_token = create_access_token({"sub": alice})
        bob_token = create_access_token({"sub": bob})

        with client.websocket_connect(f"/ws/chats/{bob}?token={alice_token}") as ws:
            assert ws.receive_json() == {"type": "snapshot", "data": []}

            client.post(
                "/api/messages",
                json={"receiverId": alice, "content": "hi alice"},
                headers={"Authorization": f"Bearer {bob_token}"},
            )
            update = ws.receive_json()
            assert [m["content"] for m in update["data"]] == ["hi alice"]

            ws.send_json({"content": "hi bob"})
            update = ws.receive_json()
            assert [m["content"] for m in update["data"]] == ["hi alice", "hi bob"]

            ws.send_json({"content": "  "})
            notice = ws.receive_json()
            assert notice["type"] == "notice"
            assert notice["kind"] == "validation_failure"

        assert store.hub.count() == 0

    def test_conversation_stream(self, client, make_user, insert_message):
        alice, bob = make_user("Alice"), make_user("Bob")
        token = create_access_token({"sub": alice})

        with client.websocket_connect(f"/ws/conversations?token={token}") as ws:
            assert ws.receive_json()["data"] == []
            insert_message(bob, alice, "ping", 1)
            data = ws.receive_json()["data"]
            assert [(c["partnerId"], c["lastMessage"]) for c in data] == [(bob, "ping")]

    def test_non_json_frame_gets_a_notice_and_stream_survives(self, client, make_user):
        alice, bob = make_user("Alice"), make_user("Bob")
        token = create_access_token({"sub": alice})

        with client.websocket_connect(f"/ws/chats/{bob}?token={token}") as ws:
            assert ws.receive_json()["data"] == []

            ws.send_text("not json")
            notice = ws.receive_json()
            assert notice["type"] == "notice"
            assert notice["kind"] == "validation_failure"

            ws.send_json({"content": "still here"})
            update = ws.receive_json()
            assert [m["content"] for m in update["data"]] == ["still here"]
