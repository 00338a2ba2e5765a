import os

from backend import db
from backend.services import image_analysis

JPEG = b"\xff\xd8\xff\xe0fake-jpeg-bytes"


def upload(client, headers, **form):
    return client.post(
        "/api/images/upload",
        headers=headers,
        files={"image": ("leaf.jpg", JPEG, "image/jpeg")},
        data=form,
    )


def test_upload_runs_background_analysis(client, farmer):
    resp = upload(client, farmer["headers"], cropType="corn", latitude="12.97", longitude="77.59")
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Image uploaded successfully, analysis in progress"
    data = body["data"]
    assert data["status"] == "processing"
    assert data["imageUrl"].startswith("/uploads/images/image-")
    assert data["locationUsed"] == "provided"

    resp = client.get(f"/api/images/analyses/{data['analysisId']}", headers=farmer["headers"])
    assert resp.status_code == 200
    analysis = resp.json()["data"]["analysis"]
    assert analysis["status"] == "completed"
    crop = analysis["analysis"]["cropAnalysis"]
    assert crop["detectedCrop"] == "Corn"
    assert crop["healthScore"] == 87
    assert crop["condition"] == "excellent"
    assert analysis["analysis"]["modelUsed"] == "mobilenet-v2"
    assert resp.json()["data"]["summary"]["crop"] == "Corn"


def test_upload_without_file(client, farmer):
    resp = client.post("/api/images/upload", headers=farmer["headers"], data={"cropType": "rice"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "No image file provided"


def test_upload_rejects_non_images(client, farmer):
    resp = client.post(
        "/api/images/upload",
        headers=farmer["headers"],
        files={"image": ("notes.txt", b"hello", "text/plain")},
    )
    assert resp.status_code == 400


def test_upload_falls_back_to_profile_location(client, farmer):
    client.put(
        "/api/auth/profile/location",
        headers=farmer["headers"],
        json={"latitude": 28.61, "longitude": 77.2, "city": "Delhi", "country": "India"},
    )
    data = upload(client, farmer["headers"]).json()["data"]
    record = db.collection(db.IMAGE_ANALYSES).find_one({"_id": db.parse_object_id(data["analysisId"])})
    location = record["metadata"]["location"]
    assert (location["latitude"], location["longitude"]) == (28.61, 77.2)


def test_classifier_failure_marks_record_failed(client, farmer, monkeypatch):
    def broken(path):
        raise RuntimeError("AI model not available")

    monkeypatch.setattr(image_analysis.vision, "analyze_image", broken)
    data = upload(client, farmer["headers"]).json()["data"]
    record = db.collection(db.IMAGE_ANALYSES).find_one({"_id": db.parse_object_id(data["analysisId"])})
    assert record["status"] == "failed"
    assert record["errorMessage"] == "AI model not available"


def test_list_and_filter_analyses(client, farmer):
    for _ in range(3):
        upload(client, farmer["headers"])
    resp = client.get("/api/images/analyses?limit=2", headers=farmer["headers"])
    data = resp.json()["data"]
    assert len(data["analyses"]) == 2
    assert data["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}

    resp = client.get("/api/images/analyses?status=failed", headers=farmer["headers"])
    assert resp.json()["data"]["analyses"] == []


def test_other_users_cannot_read_until_shared(client, farmer, other_farmer):
    analysis_id = upload(client, farmer["headers"]).json()["data"]["analysisId"]
    url = f"/api/images/analyses/{analysis_id}"
    assert client.get(url, headers=other_farmer["headers"]).status_code == 404

    resp = client.post(
        f"{url}/share",
        headers=farmer["headers"],
        json={"userIds": [other_farmer["user"]["_id"], other_farmer["user"]["_id"]]},
    )
    assert resp.status_code == 200
    record = db.collection(db.IMAGE_ANALYSES).find_one({"_id": db.parse_object_id(analysis_id)})
    assert len(record["sharedWith"]) == 1
    assert client.get(url, headers=other_farmer["headers"]).status_code == 200


def test_malformed_id_is_not_found(client, farmer):
    resp = client.get("/api/images/analyses/not-an-id", headers=farmer["headers"])
    assert resp.status_code == 404
    assert resp.json()["message"] == "Analysis not found"


def test_feedback_and_delete(client, farmer):
    data = upload(client, farmer["headers"]).json()["data"]
    url = f"/api/images/analyses/{data['analysisId']}"

    resp = client.post(f"{url}/feedback", headers=farmer["headers"], json={"rating": 6})
    assert resp.status_code == 400

    resp = client.post(f"{url}/feedback", headers=farmer["headers"], json={"rating": 4, "comments": "close"})
    assert resp.status_code == 200
    record = db.collection(db.IMAGE_ANALYSES).find_one({"_id": db.parse_object_id(data["analysisId"])})
    assert record["feedback"]["rating"] == 4

    path = record["originalImage"]["path"]
    assert os.path.exists(path)
    assert client.delete(url, headers=farmer["headers"]).status_code == 200
    assert not os.path.exists(path)
    assert client.get(url, headers=farmer["headers"]).status_code == 404


def test_nearby_and_stats(client, farmer):
    upload(client, farmer["headers"], latitude="12.97", longitude="77.59")
    upload(client, farmer["headers"], latitude="28.61", longitude="77.20")

    assert client.get("/api/images/nearby", headers=farmer["headers"]).status_code == 400
    resp = client.get(
        "/api/images/nearby?latitude=12.98&longitude=77.6&radius=5000", headers=farmer["headers"]
    )
    assert len(resp.json()["data"]["analyses"]) == 1

    stats = client.get("/api/images/stats", headers=farmer["headers"]).json()["data"]
    assert stats["overall"]["totalAnalyses"] == 2
    assert stats["overall"]["completedAnalyses"] == 2
    assert stats["overall"]["averageHealthScore"] == 87
    assert stats["monthly"][0]["count"] == 2


def test_upload_over_size_limit_is_rejected(client, farmer, monkeypatch):
    from backend.config import Config

    monkeypatch.setattr(Config, "max_upload_mb", 1)
    oversized = JPEG + b"\0" * (Config.max_upload_bytes() + 1)
    resp = client.post(
        "/api/images/upload",
        headers=farmer["headers"],
        files={"image": ("big.jpg", oversized, "image/jpeg")},
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "File too large. Maximum size is 1MB"
    assert db.collection(db.IMAGE_ANALYSES).count_documents({}) == 0


def test_responses_hide_server_file_path(client, farmer):
    data = upload(client, farmer["headers"], latitude="12.97", longitude="77.59").json()["data"]
    assert "path" not in data["analysis"]["originalImage"]
    assert data["analysis"]["originalImage"]["url"] == data["imageUrl"]

    listed = client.get("/api/images/analyses", headers=farmer["headers"]).json()["data"]["analyses"]
    assert "path" not in listed[0]["originalImage"]
    single = client.get(f"/api/images/analyses/{data['analysisId']}", headers=farmer["headers"]).json()
    assert "path" not in single["data"]["analysis"]["originalImage"]
    nearby = client.get("/api/images/nearby?latitude=12.97&longitude=77.59", headers=farmer["headers"]).json()
    assert "path" not in nearby["data"]["analyses"][0]["originalImage"]

    stored = db.collection(db.IMAGE_ANALYSES).find_one({})
    assert os.path.exists(stored["originalImage"]["path"])
