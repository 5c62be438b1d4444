"""Tests for the FastAPI surface."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import server
from exposure.pipeline import ExposurePipeline
from exposure.utils.config import Config


@pytest.fixture
def client(tmp_path):
    config = Config.from_dict({
        "backend": {"timeout": 5, "max_retries": 3, "backoff_base": 0},
        "report": {"output_dir": str(tmp_path)},
    })
    server.app.state.pipeline = ExposurePipeline(config=config)
    with TestClient(server.app) as test_client:
        yield test_client
    server.app.state.pipeline = None


@pytest.fixture
def ingested(client, export_rows):
    response = client.post("/ingest", json={"rows": export_rows, "snapshot_id": "snap-api"})
    assert response.status_code == 200
    return response.json()


def _deploy_aged(client):
    response = client.post("/reviews/deploy", json={
        "kind": "age_bucket",
        "value": "365+ Days",
        "assignee": "R. Okafor",
        "deadline": "2026-01-15",
    })
    assert response.status_code == 200
    return response.json()


def test_health_before_ingest(client):
    body = client.get("/health").json()

    assert body == {"status": "ok", "feed_connected": True, "latest_snapshot": None, "open_reviews": 0}


def test_health_reports_dropped_feed(client):
    client.app.state.pipeline.store.drop_connections()

    assert client.get("/health").json()["feed_connected"] is False


def test_nothing_to_report_before_ingest(client):
    assert client.get("/snapshots/latest").status_code == 404
    assert client.post("/reports/executive").status_code == 404


def test_ingest_reports_rejected_rows_and_risk(ingested):
    assert ingested["snapshot"]["snapshot_id"] == "snap-api"
    assert ingested["snapshot"]["record_count"] == 3
    assert ingested["delta"] is None
    assert ingested["rejected"][0]["row_index"] == 3
    assert [claim["claim_id"] for claim in ingested["at_risk"]] == ["65-100001"]


def test_latest_snapshot_after_ingest(client, ingested):
    body = client.get("/snapshots/latest").json()

    assert body["snapshot_id"] == "snap-api"
    assert {row["coverage"] for row in body["cp1_by_coverage"]} >= {"BI", "PD", "UM"}
    assert client.get("/health").json()["latest_snapshot"] == "snap-api"


def test_review_lifecycle(client, ingested):
    deployed = _deploy_aged(client)
    assert deployed["assigned"] == 1
    item = deployed["items"][0]
    assert item["claim_id"] == "65-100001"
    assert item["notes"] == "Deadline: January 15, 2026"

    # A claim cannot be completed before it is in review
    conflict = client.post(f"/reviews/{item['id']}/complete")
    assert conflict.status_code == 409
    assert conflict.json()["error"]["error_type"] == "INVALID_TRANSITION"

    started = client.post(f"/reviews/{item['id']}/start_review")
    assert started.status_code == 200
    assert started.json()["status"] == "in_review"

    completed = client.post(f"/reviews/{item['id']}/complete", json={"notes": "Reserve confirmed"})
    assert completed.json()["notes"] == "Reserve confirmed"

    summary = client.get("/reviews/summary").json()
    assert summary["total"] == 1
    assert summary["by_status"]["completed"] == 1
    assert [row["id"] for row in client.get("/reviews", params={"status": "completed"}).json()] == [item["id"]]
    assert client.get("/reviews", params={"status": "assigned"}).json() == []


def test_redeploy_skips_claims_under_review(client, ingested):
    _deploy_aged(client)

    assert _deploy_aged(client) == {"assigned": 0, "items": []}


def test_unknown_review_and_action(client, ingested):
    assert client.post("/reviews/no-such-id/start_review").status_code == 404
    item = _deploy_aged(client)["items"][0]
    assert client.post(f"/reviews/{item['id']}/reopen").status_code == 404


@pytest.mark.parametrize("payload", [
    {"kind": "age_bucket", "value": "ancient"},
    {"kind": "adjuster", "value": "R. Okafor"},
    {"kind": "named", "value": "no-such-filter"},
])
def test_bad_selection_is_rejected(client, ingested, payload):
    assert client.post("/reviews/deploy", json=payload).status_code == 400


def test_deploy_notification_needs_a_channel(client, ingested):
    response = client.post("/reviews/deploy", json={
        "kind": "age_bucket",
        "value": "365+ Days",
        "notify": ["claims-desk@example.com"],
    })

    assert response.status_code == 400
    assert client.get("/reviews").json() == []


def test_executive_report_with_render(client, ingested, tmp_path):
    response = client.post("/reports/executive", json={"render": True})

    assert response.status_code == 200
    body = response.json()
    assert body["model"]["title"] == "Open Inventory Executive Summary"
    assert "passed" in body["quality"]
    artifact = Path(body["export"]["artifact"])
    assert artifact.parent == tmp_path
    assert artifact.exists()
    assert body["export"]["page_count"] >= 1
    assert body["export"]["deliveries"] == []


def test_executive_report_without_render(client, ingested):
    body = client.post("/reports/executive").json()

    assert body["export"] is None
    assert len(body["model"]["executive_summary"]["metrics"]) == 5
