from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient
from tenacity import wait_none

from quickscan_agent.config import Settings
from quickscan_agent.db import Store
from quickscan_agent.expander import fallback_report
from quickscan_agent.llm import CompletionClient, CompletionError
from quickscan_agent.mailer import EmailProvider, Notifier
from quickscan_agent.main import create_app
from quickscan_agent.models import Analysis, ExpandedReport, Reachability, ScanRecord
from quickscan_agent.pipeline import AppContext, ScanService


class FakeWeb:
    """WebClient stand-in that records every call."""

    def __init__(self, reachable: bool = True, error: str | None = None, text: str = "Acme builds rockets.") -> None:
        self.reachable = reachable
        self.error = error
        self.text = text
        self.probes: list[str] = []
        self.fetches: list[str] = []

    def probe(self, url: str) -> Reachability:
        self.probes.append(url)
        return Reachability(reachable=self.reachable, error=self.error)

    def fetch_text(self, url: str) -> str:
        self.fetches.append(url)
        return self.text


class FakeCompletion(CompletionClient):
    """Replays queued responses; an Exception instance in the queue is raised."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: list[list[dict[str, str]]] = []

    def complete(self, messages, *, temperature: float) -> str:
        self.calls.append(messages)
        if not self.responses:
            raise CompletionError("no scripted response")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            return item
        return json.dumps(item)


class FakeEmailProvider(EmailProvider):
    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.fail_for = fail_for or set()
        self.sent: list[dict[str, str]] = []

    def send_email(self, *, from_addr: str, to_addr: str, subject: str, html_body: str) -> None:
        if to_addr in self.fail_for or "*" in self.fail_for:
            raise ConnectionError(f"SMTP refused {to_addr}")
        self.sent.append({"from": from_addr, "to": to_addr, "subject": subject, "html": html_body})


def opportunity(i: int, **overrides: Any) -> dict[str, Any]:
    opp = {
        "id": i,
        "title": f"Opportunity {i}",
        "description": f"Description {i}",
        "businessCase": {
            "potentialImpact": "High",
            "estimatedROI": "100-200%",
            "implementationCost": "€5,000 - €10,000",
            "timeToValue": f"{i}-{i + 1} months",
            "benefits": ["Faster", "Cheaper"],
            "rationale": "Because.",
            "keyMetrics": ["10% less work"],
        },
    }
    opp.update(overrides)
    return opp


def analysis_payload(count: int = 3) -> dict[str, Any]:
    return {
        "companyDescription": "Acme builds rockets for hobbyists.",
        "opportunities": [opportunity(i) for i in range(1, count + 1)],
    }


CREATED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def scan_record(scan_id: str = "scan_1", identity: str | None = "203.0.113.9") -> ScanRecord:
    return ScanRecord.model_validate(
        {**analysis_payload(), "id": scan_id, "url": "https://acme.example", "createdAt": CREATED, "identity": identity}
    )


def expanded_report(report_id: str = "report_1", email: str = "jane@example.com") -> ExpandedReport:
    body = fallback_report(Analysis.model_validate(analysis_payload()), "AI-Group")
    return ExpandedReport(
        **body.model_dump(),
        id=report_id,
        linked_scan_id="scan_1",
        email=email,
        url="https://acme.example",
        created_at=CREATED,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        scan_limit=5,
        expanded_report_limit=3,
        smtp_from_email="scan@example.org",
        operator_email="ops@example.org",
        contact_email="help@example.org",
        llm_max_attempts=3,
    )


@pytest.fixture
def store() -> Store:
    s = Store.from_url("sqlite://")
    s.create_all()
    return s


@pytest.fixture
def web() -> FakeWeb:
    return FakeWeb()


@pytest.fixture
def completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def email_provider() -> FakeEmailProvider:
    return FakeEmailProvider()


@pytest.fixture
def context(settings, store, web, completion, email_provider) -> AppContext:
    return AppContext(
        settings=settings,
        store=store,
        web=web,
        completion=completion,
        notifier=Notifier(email_provider, from_addr=settings.smtp_from_email, operator_addr=settings.operator_email),
    )


@pytest.fixture
def service(context) -> ScanService:
    svc = ScanService(context)
    svc.analyzer.retry_wait = wait_none()
    svc.expander.retry_wait = wait_none()
    return svc


@pytest.fixture
def client(context, service) -> TestClient:
    app = create_app(context)
    app.state.service = service
    with TestClient(app) as c:
        yield c
