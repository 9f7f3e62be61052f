"""Integration tests for the conversation store endpoints."""

from tests.mocks import fake_openai


async def _create(client) -> dict:
    response = await client.post("/api/chats")
    assert response.status_code == 201
    return response.json()


class TestConversationCrud:
    async def test_create_conversation(self, api_client):
        data = await _create(api_client)
        assert data["title"] == "New Chat"
        assert "id" in data
        assert "createdAt" in data

    async def test_list_newest_first(self, api_client):
        first = await _create(api_client)
        second = await _create(api_client)

        response = await api_client.get("/api/chats")
        assert response.status_code == 200
        assert [c["id"] for c in response.json()] == [second["id"], first["id"]]

    async def test_get_conversation_detail(self, api_client):
        chat = await _create(api_client)
        response = await api_client.get(f"/api/chats/{chat['id']}")
        assert response.status_code == 200
        data = response.json()
        assert data["conversation"]["id"] == chat["id"]
        assert data["messages"] == []

    async def test_get_unknown_conversation(self, api_client):
        response = await api_client.get("/api/chats/does-not-exist")
        assert response.status_code == 404
        assert response.json() == {"error": "Chat not found", "code": "NOT_FOUND"}

    async def test_delete_conversation(self, api_client):
        chat = await _create(api_client)
        await api_client.post(f"/api/chats/{chat['id']}/messages", json={"content": "Hello"})

        response = await api_client.delete(f"/api/chats/{chat['id']}")
        assert response.status_code == 200
        assert response.json() == {"message": "Chat deleted successfully", "id": chat["id"]}

        response = await api_client.get(f"/api/chats/{chat['id']}")
        assert response.status_code == 404

    async def test_delete_unknown_conversation(self, api_client):
        response = await api_client.delete("/api/chats/does-not-exist")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"


class TestMessages:
    async def test_send_message(self, api_client):
        chat = await _create(api_client)
        response = await api_client.post(f"/api/chats/{chat['id']}/messages", json={"content": "Hello"})

        assert response.status_code == 201
        data = response.json()
        assert data["userMessage"]["content"] == "Hello"
        assert data["userMessage"]["role"] == "user"
        assert data["assistantMessage"]["content"] == f"{fake_openai.REPLY_PREFIX}Hello"
        assert data["assistantMessage"]["role"] == "assistant"
        assert data["updatedTitle"] == "Hello"

        detail = (await api_client.get(f"/api/chats/{chat['id']}")).json()
        assert detail["conversation"]["title"] == "Hello"
        assert len(detail["messages"]) == 2

    async def test_empty_message_rejected(self, api_client):
        chat = await _create(api_client)
        response = await api_client.post(f"/api/chats/{chat['id']}/messages", json={"content": "   "})
        assert response.status_code == 400
        assert response.json() == {"error": "Message cannot be empty", "code": "INVALID_INPUT"}

    async def test_too_long_message_rejected(self, api_client):
        chat = await _create(api_client)
        response = await api_client.post(f"/api/chats/{chat['id']}/messages", json={"content": "x" * 2001})
        assert response.status_code == 400
        assert response.json()["error"] == "Message too long"

    async def test_malformed_body_rejected(self, api_client):
        chat = await _create(api_client)
        response = await api_client.post(f"/api/chats/{chat['id']}/messages", json={"content": ["x"]})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"

    async def test_message_to_unknown_conversation(self, api_client):
        response = await api_client.post("/api/chats/does-not-exist/messages", json={"content": "Hello"})
        assert response.status_code == 404

    async def test_provider_failure_returns_persisted_user_message(self, api_client):
        chat = await _create(api_client)
        fake_openai.controls.fail_status = 500

        response = await api_client.post(f"/api/chats/{chat['id']}/messages", json={"content": "Hello"})

        assert response.status_code == 503
        data = response.json()
        assert data["code"] == "AI_PROVIDER_ERROR"
        assert data["error"] == "AI provider error"
        assert data["userMessage"]["content"] == "Hello"
        assert data["updatedTitle"] == "Hello"

        detail = (await api_client.get(f"/api/chats/{chat['id']}")).json()
        assert [m["id"] for m in detail["messages"]] == [data["userMessage"]["id"]]

    async def test_retry_message_id_regenerates_reply(self, api_client):
        chat = await _create(api_client)
        fake_openai.controls.fail_status = 500
        failed = (await api_client.post(f"/api/chats/{chat['id']}/messages", json={"content": "Hello"})).json()
        fake_openai.controls.fail_status = None

        response = await api_client.post(
            f"/api/chats/{chat['id']}/messages",
            json={"content": "Hello", "retryMessageId": failed["userMessage"]["id"]},
        )

        assert response.status_code == 201
        assert response.json()["userMessage"]["id"] == failed["userMessage"]["id"]
        detail = (await api_client.get(f"/api/chats/{chat['id']}")).json()
        assert [m["role"] for m in detail["messages"]] == ["user", "assistant"]

    async def test_replace_from_message_id_truncates(self, api_client):
        chat = await _create(api_client)
        url = f"/api/chats/{chat['id']}/messages"
        await api_client.post(url, json={"content": "q1"})
        second = (await api_client.post(url, json={"content": "q2"})).json()

        response = await api_client.post(
            url, json={"content": "q2 revised", "replaceFromMessageId": second["userMessage"]["id"]}
        )

        assert response.status_code == 201
        detail = (await api_client.get(f"/api/chats/{chat['id']}")).json()
        assert [m["content"] for m in detail["messages"]] == [
            "q1",
            f"{fake_openai.REPLY_PREFIX}q1",
            "q2 revised",
            f"{fake_openai.REPLY_PREFIX}q2 revised",
        ]
        # The provider saw the truncated history only
        sent = fake_openai.controls.requests[-1]["messages"]
        assert [m["content"] for m in sent if m["role"] == "user"] == ["q1", "q2 revised"]
