import mongomock
import pytest
from fastapi.testclient import TestClient

from backend import db
from backend.config import Config
from backend.services import chatbot, image_analysis

FAKE_PREDICTIONS = [
    {"className": "ear, spike, capitulum", "probability": 0.9, "classId": 998},
    {"className": "corn", "probability": 0.05, "classId": 987},
    {"className": "hay", "probability": 0.02, "classId": 958},
]

PASSWORD = "Secret#1"


@pytest.fixture(autouse=True)
def mongo(monkeypatch, tmp_path):
    client = mongomock.MongoClient()
    db.set_client(client)
    monkeypatch.setattr(Config, "upload_dir", str(tmp_path))
    monkeypatch.setattr(Config, "gemini_api_key", "")
    monkeypatch.setattr(Config, "openweather_api_key", "test-key")
    yield client
    db.set_client(None)


@pytest.fixture(autouse=True)
def fake_classifier(monkeypatch):
    def analyze(path):
        analysis = image_analysis.vision.convert_to_agricultural_analysis(FAKE_PREDICTIONS)
        analysis["modelUsed"] = image_analysis.vision.MODEL_ID
        analysis["predictions"] = FAKE_PREDICTIONS
        return analysis

    monkeypatch.setattr(image_analysis.vision, "analyze_image", analyze)
    return analyze


@pytest.fixture
def client():
    from backend import main

    main.rate_limiter.reset()
    with TestClient(main.app) as c:
        yield c


def register(client, email="farmer@example.com", name="Ravi Kumar", **extra):
    body = {"name": name, "email": email, "password": PASSWORD}
    body.update(extra)
    resp = client.post("/api/auth/register", json=body)
    assert resp.status_code == 201, resp.text
    data = resp.json()["data"]
    return {
        "user": data["user"],
        "token": data["token"],
        "refreshToken": data["refreshToken"],
        "headers": {"Authorization": f"Bearer {data['token']}"},
    }


@pytest.fixture
def farmer(client):
    return register(client)


@pytest.fixture
def other_farmer(client):
    return register(client, email="neighbour@example.com", name="Sita Devi")


@pytest.fixture
def no_gemini(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("Gemini must not be called without an API key")

    monkeypatch.setattr(chatbot, "_ask_gemini", fail)
