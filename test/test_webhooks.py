import asyncio
import base64
import json
import time

import pytest
from fastapi.testclient import TestClient

from conftest import FakeVendorClient

from genmedia.config import settings
from genmedia.domain.models import VendorPending
from genmedia.main import create_app
from genmedia.services.webhook_signature import sign, verify_webhook_signature

SECRET = "whsec_" + base64.b64encode(b"super-secret-key").decode()


@pytest.fixture
def wired(make_runner, repo):
    runner = make_runner(FakeVendorClient([VendorPending()]))
    app = create_app()
    app.state.runner = runner
    return TestClient(app), runner, repo


def _pending_record(repo, job_id="p-1"):
    async def _create():
        row = await repo.create_record(
            owner_id="u",
            model="kling-v2",
            provider="replicate",
            kind="video",
            category="generated-videos",
            dispatch="worker",
            input_json={"prompt": "x"},
        )
        await repo.attach_job(row["id"], provider_job_id=job_id, vendor_endpoint=f"https://r.test/{job_id}")
        return row["id"]

    return asyncio.run(_create())


@pytest.fixture(autouse=True)
def no_secret(monkeypatch):
    monkeypatch.setattr(settings, "REPLICATE_WEBHOOK_SECRET", None)


def test_succeeded_webhook_completes_record(wired):
    client, runner, repo = wired
    rid = _pending_record(repo)

    r = client.post(
        f"/api/webhooks/replicate?record_id={rid}",
        json={"id": "p-1", "status": "succeeded", "output": "https://vendor/x.mp4"},
    )

    assert r.status_code == 200
    assert r.json()["record"]["status"] == "completed"
    assert repo.rows[rid]["stored_url"] is not None


def test_failed_webhook_keeps_vendor_message(wired):
    client, runner, repo = wired
    rid = _pending_record(repo)

    r = client.post(
        f"/api/webhooks/replicate?record_id={rid}",
        json={"id": "p-1", "status": "failed", "error": "quota exceeded"},
    )

    assert r.json()["record"]["error"] == "quota exceeded"
    assert repo.rows[rid]["status"] == "failed"


def test_non_terminal_webhook_is_ignored(wired):
    client, runner, repo = wired
    rid = _pending_record(repo)

    r = client.post(f"/api/webhooks/replicate?record_id={rid}", json={"id": "p-1", "status": "processing"})

    assert r.json() == {"ok": True, "ignored": True}
    assert repo.rows[rid]["status"] == "pending"


def test_mismatched_prediction_is_rejected(wired):
    client, runner, repo = wired
    rid = _pending_record(repo)

    r = client.post(f"/api/webhooks/replicate?record_id={rid}", json={"id": "other", "status": "succeeded"})

    assert r.status_code == 409


def test_unknown_record(wired):
    client, _, _ = wired
    r = client.post("/api/webhooks/replicate?record_id=missing", json={"id": "p", "status": "failed"})
    assert r.status_code == 404


def test_signature_is_enforced_when_secret_set(wired, monkeypatch):
    client, runner, repo = wired
    monkeypatch.setattr(settings, "REPLICATE_WEBHOOK_SECRET", SECRET)
    rid = _pending_record(repo)
    body = json.dumps({"id": "p-1", "status": "failed", "error": "boom"}).encode()
    ts = str(int(time.time()))

    bad = client.post(
        f"/api/webhooks/replicate?record_id={rid}",
        content=body,
        headers={"webhook-id": "msg_1", "webhook-timestamp": ts, "webhook-signature": "v1,AAAA"},
    )
    assert bad.status_code == 401
    assert bad.json()["detail"] == "invalid_webhook_signature"

    good = client.post(
        f"/api/webhooks/replicate?record_id={rid}",
        content=body,
        headers={
            "webhook-id": "msg_1",
            "webhook-timestamp": ts,
            "webhook-signature": sign(SECRET, webhook_id="msg_1", timestamp=ts, body=body),
            "content-type": "application/json",
        },
    )
    assert good.status_code == 200
    assert repo.rows[rid]["error"] == "boom"


def test_signature_verification_rules():
    body = b'{"id":"p"}'
    sig = sign(SECRET, webhook_id="m", timestamp="1000", body=body)

    assert verify_webhook_signature(SECRET, webhook_id="m", timestamp="1000", signature_header=sig, body=body, now=1000)
    # rotated secrets: any listed signature may match
    assert verify_webhook_signature(
        SECRET, webhook_id="m", timestamp="1000", signature_header=f"v1,old {sig}", body=body, now=1000
    )
    assert not verify_webhook_signature(
        SECRET, webhook_id="m", timestamp="1000", signature_header=sig, body=b"{}", now=1000
    )
    assert not verify_webhook_signature(
        SECRET, webhook_id="m", timestamp="1000", signature_header=sig, body=body, now=1000 + 3600
    )
    assert not verify_webhook_signature(SECRET, webhook_id=None, timestamp="1000", signature_header=sig, body=body)
