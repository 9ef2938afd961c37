from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from conftest import analysis_payload, expanded_report, scan_record
from quickscan_agent.config import Settings
from quickscan_agent.db import UnavailableStore
from quickscan_agent.main import create_app
from quickscan_agent.pipeline import AppContext

IP = "203.0.113.9"


@pytest.fixture
def unavailable_client(context):
    app = create_app(replace(context, store=UnavailableStore()))
    with TestClient(app) as c:
        yield c


def test_healthz(client):
    assert client.get("/healthz").json() == {"ok": True}


def test_scan_normalizes_url_and_returns_three_opportunities(client, completion, web, store):
    completion.responses.append(analysis_payload())

    res = client.post("/scan", json={"url": "example.com"})

    assert res.status_code == 200
    body = res.json()
    assert body["url"] == "https://example.com"
    assert body["companyDescription"]
    assert [o["id"] for o in body["opportunities"]] == [1, 2, 3]
    assert body["opportunities"][0]["businessCase"]["estimatedROI"] == "100-200%"
    assert body["scanId"].startswith("scan_")
    assert web.probes == ["https://example.com"]
    assert store.get_scan(body["scanId"]) is not None


def test_scan_is_readable_by_id(client, completion):
    completion.responses.append(analysis_payload())
    scan_id = client.post("/scan", json={"url": "example.com"}).json()["scanId"]

    res = client.get(f"/scan/{scan_id}")

    assert res.status_code == 200
    assert res.json()["scanId"] == scan_id
    assert res.json()["companyDescription"] == "Acme builds rockets for hobbyists."


def test_scan_without_llm_response_still_succeeds(client):
    res = client.post("/scan", json={"url": "https://www.acme.example"})

    assert res.status_code == 200
    assert len(res.json()["opportunities"]) == 3


def test_scan_quota_is_enforced_before_any_work(client, store, completion, web):
    for i in range(5):
        store.create_scan(scan_record(f"scan_{i}", identity=IP))

    res = client.post("/scan", json={"url": "example.com"}, headers={"x-forwarded-for": f"{IP}, 10.0.0.1"})

    assert res.status_code == 429
    body = res.json()
    assert body["limitReached"] is True
    assert body["limitType"] == "scan"
    assert body["currentCount"] == 5
    assert body["maxLimit"] == 5
    assert "help@example.org" in body["message"]
    assert completion.calls == []
    assert web.probes == []
    assert web.fetches == []


def test_scans_are_counted_per_client_ip(client, completion):
    for _ in range(2):
        client.post("/scan", json={"url": "example.com"}, headers={"x-real-ip": IP})

    res = client.get("/scan/limit", headers={"x-real-ip": IP})

    assert res.json() == {"currentCount": 2, "maxLimit": 5, "limitType": "scan"}
    assert client.get("/scan/limit", headers={"x-real-ip": "198.51.100.1"}).json()["currentCount"] == 0


@pytest.mark.parametrize("payload", [{}, {"url": ""}, {"url": "   "}, {"url": "https://exa mple.com"}])
def test_scan_rejects_missing_or_invalid_url(client, web, payload):
    res = client.post("/scan", json=payload)

    assert res.status_code == 400
    assert res.json()["error"]
    assert web.probes == []


def test_scan_rejects_non_json_body(client):
    res = client.post("/scan", content="not json", headers={"content-type": "application/json"})

    assert res.status_code == 400
    assert "error" in res.json()


def test_unreachable_site_is_rejected(client, web, completion):
    web.reachable = False
    web.error = "The website returned HTTP status 503"

    res = client.post("/scan", json={"url": "down.example"})

    assert res.status_code == 400
    assert res.json() == {"error": "The website returned HTTP status 503"}
    assert completion.calls == []


def test_unknown_scan_is_404(client):
    res = client.get("/scan/scan_missing")

    assert res.status_code == 404
    assert res.json() == {"error": "Scan not found"}


def test_expanded_report_is_stored_and_emailed(client, store, email_provider):
    store.create_scan(scan_record("scan_1"))

    res = client.post(
        "/expanded-report",
        json={"scanId": "scan_1", "email": " Jane@Example.com ", "url": "acme.example"},
    )

    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["emailSent"] is True
    assert body["scanCount"] == {"current": 1, "max": 3, "limitType": "expanded_report"}
    assert [m["to"] for m in email_provider.sent] == ["jane@example.com", "ops@example.org"]

    stored = client.get(f"/expanded-report/{body['expandedReportId']}").json()
    assert stored["emailSent"] is True
    assert stored["emailSentAt"]
    assert stored["linkedScanId"] == "scan_1"
    assert stored["email"] == "jane@example.com"
    assert len(stored["detailedOpportunities"]) == 3
    assert stored["detailedOpportunities"][0]["title"] == "Opportunity 1"


def test_expanded_report_survives_email_failure(client, store, email_provider):
    email_provider.fail_for = {"*"}
    store.create_scan(scan_record("scan_1"))

    res = client.post("/expanded-report", json={"scanId": "scan_1", "email": "jane@example.com", "url": "acme.example"})

    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["emailSent"] is False

    stored = client.get(f"/expanded-report/{body['expandedReportId']}").json()
    assert stored["emailSent"] is False
    assert stored["emailSentAt"] is None


def test_expanded_report_without_stored_scan_reanalyzes(client, web, completion):
    completion.responses.append(analysis_payload())

    res = client.post("/expanded-report", json={"email": "jane@example.com", "url": "acme.example"})

    assert res.status_code == 200
    assert web.probes == ["https://acme.example"]
    assert len(completion.calls) == 2


def test_expanded_report_quota_per_email(client, store, completion):
    for i in range(3):
        store.create_expanded_report(expanded_report(f"report_{i}", email="jane@example.com"))

    status = client.get("/scan/limit", params={"email": "JANE@example.com"}).json()
    res = client.post("/expanded-report", json={"email": "Jane@example.com", "url": "acme.example"})

    assert status == {"currentCount": 3, "maxLimit": 3, "limitType": "expanded_report"}
    assert res.status_code == 429
    assert res.json()["limitType"] == "expanded_report"
    assert res.json()["currentCount"] == 3
    assert completion.calls == []


@pytest.mark.parametrize(
    "payload",
    [
        {"url": "acme.example"},
        {"email": "jane@example.com"},
        {"email": "not-an-email", "url": "acme.example"},
        {"email": "jane@example.com", "url": "https://exa mple.com"},
    ],
)
def test_expanded_report_rejects_bad_input(client, payload):
    res = client.post("/expanded-report", json=payload)

    assert res.status_code == 400
    assert res.json()["error"]


def test_unknown_expanded_report_is_404(client):
    assert client.get("/expanded-report/report_missing").status_code == 404


def test_limit_fails_open_without_database(unavailable_client):
    res = unavailable_client.get("/scan/limit", headers={"x-forwarded-for": IP})

    assert res.status_code == 200
    assert res.json()["currentCount"] == 0


def test_scan_without_database_still_returns_result(unavailable_client):
    res = unavailable_client.post("/scan", json={"url": "example.com"})

    assert res.status_code == 200
    assert len(res.json()["opportunities"]) == 3


def test_expanded_report_without_database_fails(unavailable_client, email_provider):
    res = unavailable_client.post("/expanded-report", json={"email": "jane@example.com", "url": "acme.example"})

    assert res.status_code == 500
    assert res.json() == {"error": "Saving the expanded report failed"}
    assert email_provider.sent == []


def test_unusable_database_url_degrades_instead_of_failing_startup():
    context = AppContext.build(Settings(database_url="not a database url"))

    assert isinstance(context.store, UnavailableStore)
    with TestClient(create_app(context)) as c:
        res = c.get("/scan/limit", headers={"x-forwarded-for": IP})

    assert res.status_code == 200
    assert res.json()["currentCount"] == 0
