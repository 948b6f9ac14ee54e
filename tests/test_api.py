"""Tests for the JSON API (providers mocked, jobs run inline)."""
import json
from unittest.mock import patch

import httpx
import pytest

import studio.extensions as ext
from studio.models.usage import UsageLedger
from studio.services import ai_service, usage_service

real_build = ai_service.build_generation_client


class FakeProvider:
    """Routes Gemini and Veo calls through an httpx.MockTransport."""

    def __init__(self, image_payload):
        self.image_payload = image_payload
        self.calls = []
        self.fail_with = None

    def handler(self, request):
        self.calls.append(request)
        path = request.url.path
        if self.fail_with:
            return httpx.Response(self.fail_with, json={"error": {"message": "secret provider detail"}})
        if path.endswith(":generateContent"):
            return httpx.Response(200, json=self.image_payload())
        if path.endswith(":predictLongRunning"):
            return httpx.Response(200, json={"name": "operations/vid1"})
        if path.endswith("/operations/vid1"):
            return httpx.Response(200, json={
                "done": True,
                "response": {"generatedVideos": [{"video": {"uri": "https://dl.example.com/clip"}}]},
            })
        return httpx.Response(200, content=b"mp4-bytes", headers={"content-type": "video/mp4"})

    def build(self, config, api_key_override=None, http_client=None):
        transport = httpx.MockTransport(self.handler)
        return real_build(config, api_key_override, http_client=httpx.AsyncClient(transport=transport))

    @property
    def generate_calls(self):
        return [c for c in self.calls if c.url.path.endswith(":generateContent")]


@pytest.fixture
def provider(image_payload):
    fake = FakeProvider(image_payload)
    with patch("studio.workers.generation.ai_service.build_generation_client", side_effect=fake.build):
        yield fake


def generate(client, **form):
    body = {"productName": "Backpack", "aspectRatio": "9:16", **form}
    return client.post("/api/generations", json=body)


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code in (200, 503)
    data = resp.get_json()
    assert "status" in data


def test_health_does_not_leak_internal_errors(client, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("database password leaked")

    monkeypatch.setattr(ext.db.session, "execute", boom)

    resp = client.get("/health")
    assert resp.status_code == 503
    data = resp.get_json()
    assert data["db"] == "error"
    assert "password" not in str(data).lower()


def test_api_requires_login(client):
    resp = client.get("/api/history")
    assert resp.status_code == 401
    assert resp.get_json()["error"]["type"] == "AUTH"


def test_unknown_route_is_json(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.get_json()["error"]["type"] == "HTTP"


def test_prompt_preview(auth_client):
    resp = auth_client.post("/api/prompt/preview", json={"productName": "Backpack", "aspectRatio": "9:16"})
    assert resp.status_code == 200
    data = resp.get_json()
    assert "close-up shot" in data["prompt"]
    assert set(data["shotPrompts"]) == {"fullBody", "medium", "closeUp"}


def test_generation_end_to_end(auth_client, provider):
    resp = generate(auth_client)
    assert resp.status_code == 202
    data = resp.get_json()
    assert data["remainingCredits"] == 99

    generation = data["generation"]
    assert generation["status"] == "READY"
    assert [s["shotKind"] for s in generation["shots"]] == ["fullBody", "medium", "closeUp"]
    assert len(provider.generate_calls) == 3

    image = auth_client.get(generation["shots"][0]["imageUrl"])
    assert image.status_code == 200
    assert image.mimetype == "image/png"
    assert image.data[:8] == b"\x89PNG\r\n\x1a\n"

    history = auth_client.get("/api/history").get_json()["records"]
    assert [r["id"] for r in history] == [generation["id"]]


def test_user_api_key_header_is_used(auth_client, provider):
    resp = auth_client.post(
        "/api/generations",
        json={"productName": "Backpack"},
        headers={"X-Goog-Api-Key": " user-key "},
    )
    assert resp.status_code == 202
    assert {c.headers["x-goog-api-key"] for c in provider.generate_calls} == {"user-key"}


def test_validation_error_consumes_nothing(auth_client, account_id, provider):
    resp = generate(auth_client, productName="")
    assert resp.status_code == 400
    error = resp.get_json()["error"]
    assert error["type"] == "VALIDATION"
    assert "productName" in error["fields"]
    assert provider.calls == []
    assert auth_client.get("/api/usage").get_json()["generationCredits"] == 100


def test_missing_credential_consumes_nothing(app, auth_client, provider, monkeypatch):
    monkeypatch.setitem(app.config, "GEMINI_API_KEY", "")
    resp = generate(auth_client)
    assert resp.status_code == 503
    assert resp.get_json()["error"]["message"].startswith("API key verification failed")
    assert auth_client.get("/api/usage").get_json()["generationCredits"] == 100
    assert provider.calls == []


def test_no_credits(app, auth_client, account_id, provider):
    with app.app_context():
        usage_service.get_quota(account_id)
        ext.db.session.execute(
            ext.db.update(UsageLedger)
            .where(UsageLedger.account_id == account_id)
            .values(remaining_credits=0)
        )
        ext.db.session.commit()

    resp = generate(auth_client)
    assert resp.status_code == 402
    assert resp.get_json()["error"]["type"] == "QUOTA"
    assert provider.calls == []
    assert auth_client.get("/api/history").get_json()["records"] == []


def test_provider_failure_marks_record_failed(auth_client, provider):
    provider.fail_with = 400
    resp = generate(auth_client, additionalDescription="leather")
    assert resp.status_code == 202
    generation = resp.get_json()["generation"]
    assert generation["status"] == "FAILED"
    assert generation["errorType"] == "API"
    assert "secret provider detail" not in json.dumps(generation)
    # Credit is not refunded
    assert resp.get_json()["remainingCredits"] == 99
    assert auth_client.get("/api/usage").get_json()["generationCredits"] == 99


def test_failure_message_follows_accept_language(auth_client, provider):
    provider.fail_with = 400
    resp = auth_client.post(
        "/api/generations",
        json={"productName": "Backpack"},
        headers={"Accept-Language": "zh-TW"},
    )
    assert resp.get_json()["generation"]["errorMessage"] == "伺服器暫時無法回應，請稍後再試"


def test_get_and_cancel_generation(auth_client, provider):
    generation = generate(auth_client).get_json()["generation"]
    resp = auth_client.get(f"/api/generations/{generation['id']}")
    assert resp.get_json()["generation"]["status"] == "READY"

    # Finished generations stay READY
    resp = auth_client.post(f"/api/generations/{generation['id']}/cancel")
    assert resp.get_json()["generation"]["status"] == "READY"


def test_other_accounts_records_are_hidden(app, auth_client, provider):
    generation = generate(auth_client).get_json()["generation"]
    other = app.test_client()
    with other.session_transaction() as sess:
        sess["account_id"] = "intruder"
    assert other.get(f"/api/generations/{generation['id']}").status_code == 404
    assert other.get(generation["shots"][0]["imageUrl"]).status_code == 404
    assert other.delete(f"/api/history/{generation['id']}").status_code == 404


def test_square_video_rejected_before_provider(auth_client, provider):
    generation = generate(auth_client, aspectRatio="1:1").get_json()["generation"]
    calls_before = len(provider.calls)

    resp = auth_client.post(f"/api/shots/{generation['shots'][0]['id']}/video")
    assert resp.status_code == 400
    assert resp.get_json()["error"]["message"] == "Video animation only supports 16:9 and 9:16 images."
    assert len(provider.calls) == calls_before


def test_animate_shot(auth_client, provider):
    generation = generate(auth_client, aspectRatio="16:9").get_json()["generation"]
    shot_id = generation["shots"][1]["id"]

    resp = auth_client.post(f"/api/shots/{shot_id}/video")
    assert resp.status_code == 202
    shot = resp.get_json()["shot"]
    assert shot["videoStatus"] == "READY"

    video = auth_client.get(shot["videoUrl"])
    assert video.data == b"mp4-bytes"
    assert video.mimetype == "video/mp4"


def test_download_is_attachment(auth_client, provider):
    generation = generate(auth_client).get_json()["generation"]
    shot = generation["shots"][2]
    resp = auth_client.get(f"/api/shots/{shot['id']}/download")
    assert resp.status_code == 200
    assert resp.headers["Content-Disposition"] == (
        f'attachment; filename="closeUp-{generation["id"]}.png"'
    )


def test_history_form_and_delete(auth_client, provider):
    generation = generate(auth_client, lighting="neon light").get_json()["generation"]
    form = auth_client.get(f"/api/history/{generation['id']}/form").get_json()["form"]
    assert form["productName"] == "Backpack"
    assert form["lighting"] == "neon light"
    assert form["faceImage"] is None

    assert auth_client.delete(f"/api/history/{generation['id']}").status_code == 204
    assert auth_client.get("/api/history").get_json()["records"] == []


def test_share_rewards_credit(auth_client):
    resp = auth_client.post("/api/usage/share")
    assert resp.get_json()["generationCredits"] == 101
