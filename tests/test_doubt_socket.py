import pytest
from starlette.websockets import WebSocketDisconnect

WS = "/api/v1/ws/doubts"


def connect(client, seed, user):
    return client.websocket_connect(f"{WS}?token={seed.token(user)}")


def join(ws, thread_id):
    ws.send_json({"event": "joinDoubtRoom", "data": {"threadId": thread_id}})
    ack = ws.receive_json()
    assert ack == {
        "event": "joinedDoubtRoomSuccess",
        "data": {"threadId": thread_id, "roomName": f"thread-{thread_id}"},
    }


class TestAuthentication:
    def test_missing_credential_is_rejected(self, client):
        with client.websocket_connect(WS) as ws:
            frame = ws.receive_json()
            assert frame["event"] == "socketError"
            assert frame["data"]["status_code"] == 401
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
            assert exc.value.code == 1008

    def test_invalid_token_is_rejected(self, client):
        with client.websocket_connect(f"{WS}?token=garbage") as ws:
            assert ws.receive_json()["event"] == "socketError"
            with pytest.raises(WebSocketDisconnect):
                ws.receive_json()

    def test_inactive_account_is_rejected(self, client, seed):
        user = seed.user("Gone", status="INACTIVE")
        with connect(client, seed, user) as ws:
            frame = ws.receive_json()
            assert frame["event"] == "socketError"
            assert frame["data"]["status_code"] == 403

    def test_cookie_credential(self, client, seed, people):
        client.cookies.set("access_token", seed.token(people["alice"]))
        with client.websocket_connect(WS) as ws:
            join(ws, 1)


class TestRooms:
    def test_join_is_permissive_and_idempotent(self, client, seed, people):
        thread = seed.thread(people["alice"])
        with connect(client, seed, people["mallory"]) as ws:
            join(ws, thread.id)
            join(ws, thread.id)
            assert client.app.state.ws_manager.room_size(f"thread-{thread.id}") == 1

    def test_leave_and_disconnect_clean_up(self, client, seed, people):
        manager = client.app.state.ws_manager
        with connect(client, seed, people["alice"]) as ws:
            join(ws, 5)
            join(ws, 6)
            ws.send_json({"event": "leaveDoubtRoom", "data": 5})
            assert ws.receive_json()["event"] == "leftDoubtRoomSuccess"
            assert manager.room_size("thread-5") == 0
        assert manager.room_size("thread-6") == 0

    def test_nothing_arrives_until_a_post(self, client, seed, people):
        alice = people["alice"]
        thread = seed.thread(alice)
        with connect(client, seed, people["mallory"]) as w1, connect(client, seed, people["bob"]) as w2:
            join(w1, thread.id)
            join(w2, thread.id)

            resp = client.post(
                f"/api/v1/doubts/{thread.id}/messages",
                json={"content": "first!"},
                headers=seed.headers(alice),
            )
            assert resp.status_code == 201
            for ws in (w1, w2):
                frame = ws.receive_json()
                assert frame["event"] == "receiveDoubtMessage"
                assert frame["data"]["id"] == resp.json()["id"]
                assert frame["data"]["user"]["name"] == "Alice"

            # the next frame on each is the ack of a fresh join, not a duplicate message
            join(w1, thread.id)
            join(w2, thread.id)


class TestSocketMessages:
    def test_send_message_persists_and_echoes_to_origin(self, client, seed, people):
        alice = people["alice"]
        thread = seed.thread(alice)
        with connect(client, seed, alice) as ws:
            join(ws, thread.id)
            ws.send_json({"event": "sendDoubtMessage", "data": {"threadId": thread.id, "content": " hi there "}})
            frame = ws.receive_json()
            assert frame["event"] == "receiveDoubtMessage"
            assert frame["data"]["content"] == "hi there"
        assert seed.message_count(thread.id) == 1

    def test_forbidden_post_errors_only_to_origin(self, client, seed, people):
        thread = seed.thread(people["alice"])
        with connect(client, seed, people["alice"]) as owner, connect(client, seed, people["mallory"]) as intruder:
            join(owner, thread.id)
            join(intruder, thread.id)
            intruder.send_json(
                {"event": "sendDoubtMessage", "data": {"threadId": thread.id, "content": "spam"}}
            )
            frame = intruder.receive_json()
            assert frame["event"] == "socketError"
            assert frame["data"]["status_code"] == 403

            join(owner, thread.id)
        assert seed.message_count(thread.id) == 0

    def test_assigned_reply_reopens_and_announces_status(self, client, seed, people):
        thread = seed.thread(people["alice"], status="RESOLVED", assigned=people["bob"])
        with connect(client, seed, people["alice"]) as watcher, connect(client, seed, people["bob"]) as bob:
            join(watcher, thread.id)
            bob.send_json(
                {"event": "sendDoubtMessage", "data": {"threadId": thread.id, "content": "One more thing"}}
            )
            assert watcher.receive_json()["event"] == "receiveDoubtMessage"
            status_frame = watcher.receive_json()
            assert status_frame == {
                "event": "doubtStatusUpdated",
                "data": {"threadId": thread.id, "status": "OPEN"},
            }
        assert seed.thread_status(thread.id) == "OPEN"

    def test_typing_goes_to_peers_only(self, client, seed, people):
        thread = seed.thread(people["alice"])
        with connect(client, seed, people["alice"]) as a, connect(client, seed, people["bob"]) as b:
            join(a, thread.id)
            join(b, thread.id)
            a.send_json({"event": "userTypingInDoubt", "data": {"threadId": thread.id, "isTyping": True}})
            assert b.receive_json() == {
                "event": "userTypingUpdate",
                "data": {
                    "threadId": thread.id,
                    "userId": people["alice"].id,
                    "userName": "Alice",
                    "isTyping": True,
                },
            }
            join(a, thread.id)

    @pytest.mark.parametrize(
        "frame",
        [
            {"event": "doSomethingElse", "data": {}},
            {"data": {}},
            {"event": "joinDoubtRoom", "data": {"threadId": "abc"}},
            {"event": "sendDoubtMessage", "data": {"threadId": 1}},
            {"event": "sendDoubtMessage", "data": {"threadId": 999, "content": "hello"}},
        ],
    )
    def test_bad_frames_get_socket_error(self, client, seed, people, frame):
        with connect(client, seed, people["alice"]) as ws:
            ws.send_json(frame)
            reply = ws.receive_json()
            assert reply["event"] == "socketError"
            assert reply["data"]["message"]
            # connection stays usable
            join(ws, 3)

    def test_binary_frames_are_decoded(self, client, seed, people):
        with connect(client, seed, people["alice"]) as ws:
            ws.send_bytes(b'{"event": "joinDoubtRoom", "data": 4}')
            ack = ws.receive_json()
            assert ack["event"] == "joinedDoubtRoomSuccess"
            assert ack["data"]["threadId"] == 4

    @pytest.mark.parametrize("payload", [b"\xff\xfe not utf-8", b"not json at all"])
    def test_undecodable_binary_frame_gets_socket_error(self, client, seed, people, payload):
        with connect(client, seed, people["alice"]) as ws:
            ws.send_bytes(payload)
            reply = ws.receive_json()
            assert reply == {
                "event": "socketError",
                "data": {"message": "Frames must be JSON", "status_code": 400},
            }
            join(ws, 4)


class TestAdminDeletions:
    def test_message_deletion_reaches_room(self, client, seed, people):
        alice = people["alice"]
        thread = seed.thread(alice)
        msg_id = client.post(
            f"/api/v1/doubts/{thread.id}/messages", json={"content": "oops"}, headers=seed.headers(alice)
        ).json()["id"]

        with connect(client, seed, people["mallory"]) as ws:
            join(ws, thread.id)
            resp = client.delete(
                f"/api/v1/admin/doubts/{thread.id}/messages/{msg_id}",
                headers=seed.headers(people["admin"]),
            )
            assert resp.status_code == 200
            assert ws.receive_json() == {
                "event": "doubtMessageDeleted",
                "data": {"threadId": thread.id, "messageId": msg_id},
            }

    def test_thread_deletion_reaches_room(self, client, seed, people):
        thread = seed.thread(people["alice"])

        with connect(client, seed, people["alice"]) as w1, connect(client, seed, people["bob"]) as w2:
            join(w1, thread.id)
            join(w2, thread.id)
            resp = client.delete(f"/api/v1/admin/doubts/{thread.id}", headers=seed.headers(people["admin"]))
            assert resp.status_code == 200
            for ws in (w1, w2):
                assert ws.receive_json() == {
                    "event": "doubtThreadDeleted",
                    "data": {"threadId": thread.id},
                }
