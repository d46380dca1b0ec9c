"""Resource API tests."""

import base64
import json

import pytest


@pytest.fixture
def website(client, tenant_headers):
    """A website resource freshly added by tenant-a."""
    response = client.post(
        "/api/tenants/tenant-a/resources",
        json={"url": "https://example.com"},
        headers=tenant_headers,
    )
    assert response.status_code == 201
    return response.json()


def test_add_website(website, queue):
    assert website["kind"] == "website-url"
    assert website["status"] == "processing"
    assert website["url"] == "https://example.com"
    assert queue.sent[0]["message"]["id"] == website["id"]


def test_add_website_when_queue_is_down(client, tenant_headers, queue):
    queue.fail_with = RuntimeError("topic deleted")

    response = client.post(
        "/api/tenants/tenant-a/resources",
        json={"url": "https://example.com"},
        headers=tenant_headers,
    )

    assert response.status_code == 503
    [resource] = client.get("/api/tenants/tenant-a/resources", headers=tenant_headers).json()[
        "resources"
    ]
    assert resource["status"] == "failed"
    assert resource["error"].startswith("Failed to queue for processing:")


def test_blank_url_is_rejected(client, tenant_headers):
    response = client.post(
        "/api/tenants/tenant-a/resources", json={"url": "   "}, headers=tenant_headers
    )
    assert response.status_code == 400


def test_forwarded_tenant_must_match_path(client, tenant_headers):
    response = client.get("/api/tenants/tenant-b/resources", headers=tenant_headers)
    assert response.status_code == 403


def test_missing_tenant_header(client):
    assert client.get("/api/tenants/tenant-a/resources").status_code == 422


def test_get_and_poll(website, client, tenant_headers):
    fetched = client.get(
        f"/api/tenants/tenant-a/resources/{website['id']}", headers=tenant_headers
    ).json()
    status = client.get(
        f"/api/tenants/tenant-a/resources/{website['id']}/status", headers=tenant_headers
    ).json()

    assert fetched["id"] == website["id"]
    assert status["status"] == "processing"
    assert status["error"] is None


def test_unknown_resource(client, tenant_headers):
    response = client.get("/api/tenants/tenant-a/resources/nope", headers=tenant_headers)
    assert response.status_code == 404


class TestReindex:
    def test_rejected_while_in_flight(self, website, client, tenant_headers):
        response = client.post(
            f"/api/tenants/tenant-a/resources/{website['id']}/reindex", headers=tenant_headers
        )

        assert response.status_code == 409
        assert "already processing" in response.json()["detail"]

    def test_accepted_after_completion(
        self, sample_site, website, client, worker_client, tenant_headers, queue
    ):
        worker_client.post("/api/ingestion/push", json={
            "message": {"data": _encode(queue.sent[0]["message"]), "messageId": "1"},
        })

        response = client.post(
            f"/api/tenants/tenant-a/resources/{website['id']}/reindex", headers=tenant_headers
        )

        assert response.status_code == 202
        ack = response.json()
        assert ack == {"resource_id": website["id"], "status": "queued", "message_id": "msg-2"}

        again = client.post(
            f"/api/tenants/tenant-a/resources/{website['id']}/reindex", headers=tenant_headers
        )
        assert again.status_code == 409

    def test_unknown_resource(self, client, tenant_headers):
        response = client.post(
            "/api/tenants/tenant-a/resources/nope/reindex", headers=tenant_headers
        )
        assert response.status_code == 404

    def test_uploads_cannot_be_reindexed(self, client, tenant_headers):
        uploaded = client.post(
            "/api/tenants/tenant-a/resources/upload",
            data={"kind": "screenshot"},
            files={"file": ("home.png", b"\x89PNG\r\n", "image/png")},
            headers=tenant_headers,
        ).json()

        response = client.post(
            f"/api/tenants/tenant-a/resources/{uploaded['id']}/reindex", headers=tenant_headers
        )

        assert response.status_code == 400


class TestUpload:
    def test_raw_html_is_completed_with_keywords(self, client, tenant_headers, storage):
        response = client.post(
            "/api/tenants/tenant-a/resources/upload",
            data={"kind": "raw-html"},
            files={"file": (
                "menu.html",
                b"<html><head><title>Lunch Menu</title></head>"
                b"<body><main><p>Soup and salad daily.</p></main></body></html>",
                "text/html",
            )},
            headers=tenant_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["kind"] == "raw-html"
        assert body["status"] == "completed"
        assert body["filename"] == "menu.html"
        assert body["keywords"][:2] == ["lunch", "menu"]
        assert any("/raw-html/tenant-a/" in path for path in storage.files)

    def test_screenshot(self, client, tenant_headers):
        response = client.post(
            "/api/tenants/tenant-a/resources/upload",
            data={"kind": "screenshot"},
            files={"file": ("home.png", b"\x89PNG\r\n", "image/png")},
            headers=tenant_headers,
        )

        assert response.status_code == 201
        assert response.json()["status"] == "completed"
        assert response.json()["content_size"] == 6

    def test_wrong_content_type(self, client, tenant_headers):
        response = client.post(
            "/api/tenants/tenant-a/resources/upload",
            data={"kind": "screenshot"},
            files={"file": ("home.html", b"<p>x</p>", "text/html")},
            headers=tenant_headers,
        )
        assert response.status_code == 400

    def test_websites_are_not_uploaded(self, client, tenant_headers):
        response = client.post(
            "/api/tenants/tenant-a/resources/upload",
            data={"kind": "website-url"},
            files={"file": ("a.html", b"<p>x</p>", "text/html")},
            headers=tenant_headers,
        )
        assert response.status_code == 400


def test_delete(website, client, tenant_headers):
    response = client.delete(
        f"/api/tenants/tenant-a/resources/{website['id']}", headers=tenant_headers
    )

    assert response.status_code == 200
    assert client.get(
        f"/api/tenants/tenant-a/resources/{website['id']}", headers=tenant_headers
    ).status_code == 404


def _encode(message: dict) -> str:
    return base64.b64encode(json.dumps(message).encode("utf-8")).decode("ascii")
