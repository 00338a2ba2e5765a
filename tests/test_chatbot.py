from backend.config import Config
from backend.services import chatbot


def test_service_status(client):
    data = client.get("/api/chatbot/test").json()["data"]
    assert data["geminiEnabled"] is False


def test_chat_uses_local_knowledge_without_key(client, farmer, no_gemini):
    resp = client.post(
        "/api/chatbot/chat",
        headers=farmer["headers"],
        json={"message": "Which pest is eating my leaves"},
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["responseSource"] == "local"
    assert data["messageCount"] == 2
    assert data["response"] in chatbot.AGRICULTURAL_KNOWLEDGE["pest_control"]["responses"]

    session = client.get(f"/api/chatbot/sessions/{data['sessionId']}", headers=farmer["headers"]).json()
    session = session["data"]["session"]
    assert session["title"] == "Which pest is eating..."
    assert session["messages"][1]["metadata"] == {"source": "local", "model": "local-knowledge"}


def test_chat_continues_session_and_passes_history(client, farmer, monkeypatch):
    monkeypatch.setattr(Config, "gemini_api_key", "test-key")
    seen = []

    def fake_gemini(message, history, language, tone):
        seen.append((message, history, language, tone))
        return f"answer to {message}"

    monkeypatch.setattr(chatbot, "_ask_gemini", fake_gemini)
    first = client.post("/api/chatbot/chat", headers=farmer["headers"], json={"message": "hello"}).json()
    session_id = first["data"]["sessionId"]
    second = client.post(
        "/api/chatbot/query",
        headers=farmer["headers"],
        json={"message": "and rice?", "sessionId": session_id, "language": "hi", "tone": "simple"},
    ).json()

    assert second["data"]["sessionId"] == session_id
    assert second["data"]["messageCount"] == 4
    assert second["data"]["responseSource"] == "gemini"
    message, history, language, tone = seen[-1]
    assert history == [
        {"role": "user", "parts": ["hello"]},
        {"role": "model", "parts": ["answer to hello"]},
    ]
    assert (language, tone) == ("hi", "simple")


def test_gemini_error_falls_back(client, farmer, monkeypatch):
    monkeypatch.setattr(Config, "gemini_api_key", "test-key")

    def boom(*args):
        raise RuntimeError("quota exceeded")

    monkeypatch.setattr(chatbot, "_ask_gemini", boom)
    data = client.post(
        "/api/chatbot/chat", headers=farmer["headers"], json={"message": "tell me a joke"}
    ).json()["data"]
    assert data["responseSource"] == "local"
    assert data["response"] == chatbot.DEFAULT_FALLBACK


def test_chat_rejects_blank_and_unknown_session(client, farmer, no_gemini):
    resp = client.post("/api/chatbot/chat", headers=farmer["headers"], json={"message": "   "})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Message is required"

    resp = client.post(
        "/api/chatbot/chat",
        headers=farmer["headers"],
        json={"message": "soil tips", "sessionId": "garbage"},
    )
    assert resp.json()["data"]["messageCount"] == 2


def test_session_management(client, farmer, no_gemini):
    session_id = client.post(
        "/api/chatbot/chat", headers=farmer["headers"], json={"message": "Best fertilizer for wheat"}
    ).json()["data"]["sessionId"]
    base = f"/api/chatbot/sessions/{session_id}"

    assert client.put(f"{base}/title", headers=farmer["headers"], json={}).status_code == 400
    resp = client.put(f"{base}/title", headers=farmer["headers"], json={"title": "Wheat plan"})
    assert resp.json()["data"]["title"] == "Wheat plan"

    resp = client.put(f"{base}/settings", headers=farmer["headers"], json={"tone": "friendly"})
    assert resp.json()["data"]["settings"] == {"language": "en", "tone": "friendly", "context": "general"}

    hits = client.get(f"{base}/search?q=FERTILIZER", headers=farmer["headers"]).json()["data"]
    assert hits["total"] >= 1

    sessions = client.get("/api/chatbot/sessions", headers=farmer["headers"]).json()["data"]["sessions"]
    assert sessions[0]["title"] == "Wheat plan"
    assert "messages" not in sessions[0]

    assert client.delete(base, headers=farmer["headers"]).status_code == 200
    resp = client.get(base, headers=farmer["headers"])
    assert resp.status_code == 404
    assert resp.json()["message"] == "Chat session not found"


def test_export_csv_doubles_quotes(client, farmer, no_gemini):
    session_id = client.post(
        "/api/chatbot/chat", headers=farmer["headers"], json={"message": 'what is "NPK"?'}
    ).json()["data"]["sessionId"]
    resp = client.get(f"/api/chatbot/sessions/{session_id}/export?format=csv", headers=farmer["headers"])
    assert resp.headers["content-type"].startswith("text/csv")
    lines = resp.text.splitlines()
    assert lines[0] == "Timestamp,Role,Content"
    assert lines[1].endswith(',user,"what is ""NPK""?"')

    resp = client.get(f"/api/chatbot/sessions/{session_id}/export", headers=farmer["headers"])
    assert resp.json()["messageCount"] == 2


def test_quick_responses_and_analytics(client, farmer, no_gemini):
    quick = client.get("/api/chatbot/quick-responses", headers=farmer["headers"]).json()["data"]
    assert quick["quickResponses"]

    client.post("/api/chatbot/chat", headers=farmer["headers"], json={"message": "water schedule"})
    data = client.get("/api/chatbot/analytics", headers=farmer["headers"]).json()["data"]
    assert data["summary"]["totalSessions"] == 1
    assert data["summary"]["totalMessages"] == 2
    assert data["monthly"][0]["sessions"] == 1


def test_auto_title_rules():
    assert chatbot.auto_title([{"role": "user", "content": "rice"}]) == "rice"
    long_title = chatbot.auto_title([{"role": "user", "content": "when should I irrigate my paddy field"}])
    assert long_title == "when should I irriga..."
    assert chatbot.auto_title([{"role": "assistant", "content": "hi"}]) is None
