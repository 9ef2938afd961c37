from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from .analyzer import OpportunityAnalyzer
from .config import Settings
from .db import Store, StoreError, UnavailableStore
from .errors import InvalidInput, NotFound, PersistenceFailed, SiteUnreachable
from .expander import ReportExpander
from .fetcher import WebClient
from .llm import CompletionClient, DisabledCompletion, GeminiCompletion
from .mailer import Notifier, SMTPEmailProvider
from .models import Analysis, ExpandedReport, LimitStatus, ScanCount, ScanRecord
from .quota import QuotaLedger
from .url_utils import is_valid_email, is_valid_url, normalize_email, normalize_url

logger = logging.getLogger(__name__)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:20]}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AppContext:
    """Everything a request needs, built once per process."""

    settings: Settings
    store: Store
    web: WebClient
    completion: CompletionClient
    notifier: Notifier

    @classmethod
    def build(cls, settings: Settings) -> "AppContext":
        store: Store
        if settings.database_url:
            try:
                store = Store.from_url(settings.database_url, timeout_s=settings.db_timeout_s)
            except StoreError as e:
                logger.error("DATABASE_URL is unusable; scans will not be persisted: %s", e)
                store = UnavailableStore(str(e))
            else:
                try:
                    store.create_all()
                except StoreError as e:
                    logger.error("Database initialization failed; continuing without guarantees: %s", e)
        else:
            logger.warning("DATABASE_URL not set; scans will not be persisted")
            store = UnavailableStore()

        if settings.gemini_api_key:
            completion: CompletionClient = GeminiCompletion(
                settings.gemini_api_key, settings.gemini_model, timeout_s=settings.llm_timeout_s
            )
        else:
            logger.warning("GEMINI_API_KEY not set; analyses will use static content")
            completion = DisabledCompletion()

        provider = None
        if settings.smtp_configured:
            provider = SMTPEmailProvider(
                settings.smtp_host or "",
                settings.smtp_port,
                settings.smtp_user,
                settings.smtp_pass,
                use_ssl=settings.smtp_secure,
                timeout=settings.smtp_timeout_s,
            )

        return cls(
            settings=settings,
            store=store,
            web=WebClient(),
            completion=completion,
            notifier=Notifier(provider, from_addr=settings.smtp_from_email, operator_addr=settings.operator_email),
        )


@dataclass
class ExpandedReportResult:
    report: ExpandedReport
    scan_count: ScanCount


class ScanService:
    """The scan lifecycle: validate, gate on quota, probe, analyze, persist."""

    def __init__(self, ctx: AppContext) -> None:
        self.ctx = ctx
        s = ctx.settings
        self.ledger = QuotaLedger(
            ctx.store,
            {"scan": s.scan_limit, "expanded_report": s.expanded_report_limit},
            contact_email=s.contact_email,
        )
        self.analyzer = OpportunityAnalyzer(
            ctx.web, ctx.completion, temperature=s.llm_temperature, max_attempts=s.llm_max_attempts
        )
        self.expander = ReportExpander(
            ctx.completion,
            partner_name=s.partner_name,
            temperature=s.llm_temperature,
            max_attempts=s.llm_max_attempts,
        )

    @staticmethod
    def _valid_url(raw: str | None) -> str:
        if not raw or not raw.strip():
            raise InvalidInput("URL is required")
        url = normalize_url(raw)
        if not is_valid_url(url):
            raise InvalidInput("Invalid URL")
        return url

    def _ensure_reachable(self, url: str) -> None:
        result = self.ctx.web.probe(url)
        if not result.reachable:
            raise SiteUnreachable(
                result.error
                or "The website is unreachable. Check that the URL is correct and that the site is online."
            )

    def run_scan(self, raw_url: str | None, identity: str | None) -> ScanRecord:
        url = self._valid_url(raw_url)
        self.ledger.check("scan", identity)
        self._ensure_reachable(url)

        analysis = self.analyzer.analyze(url)
        record = ScanRecord(
            id=new_id("scan"),
            url=url,
            company_description=analysis.company_description,
            opportunities=analysis.opportunities,
            created_at=_now(),
            identity=identity,
        )
        try:
            self.ctx.store.create_scan(record)
        except StoreError as e:
            logger.error("Saving scan %s for %s failed; returning unsaved result: %s", record.id, url, e)
        return record

    def get_scan(self, scan_id: str) -> ScanRecord:
        try:
            record = self.ctx.store.get_scan(scan_id)
        except StoreError as e:
            logger.error("Loading scan %s failed: %s", scan_id, e)
            raise PersistenceFailed("Loading the scan failed") from e
        if record is None:
            raise NotFound("Scan not found")
        return record

    def limit_status(self, email: str | None, ip: str | None) -> LimitStatus:
        if email and email.strip():
            return self.ledger.status("expanded_report", normalize_email(email))
        return self.ledger.status("scan", ip)

    def _basic_analysis(self, scan_id: str | None, url: str) -> Analysis:
        if scan_id:
            try:
                stored = self.ctx.store.get_scan(scan_id)
            except StoreError as e:
                logger.warning("Loading scan %s failed; re-analyzing %s: %s", scan_id, url, e)
                stored = None
            if stored is not None:
                return Analysis(
                    company_description=stored.company_description,
                    opportunities=stored.opportunities,
                )
        self._ensure_reachable(url)
        return self.analyzer.analyze(url)

    def request_expanded_report(
        self, scan_id: str | None, raw_email: str | None, raw_url: str | None
    ) -> ExpandedReportResult:
        if not raw_email or not raw_url:
            raise InvalidInput("Email and URL are required")
        email = normalize_email(raw_email)
        if not is_valid_email(email):
            raise InvalidInput("Invalid email address")

        self.ledger.check("expanded_report", email)
        url = self._valid_url(raw_url)

        analysis = self._basic_analysis(scan_id, url)
        body = self.expander.expand(url, analysis)

        report = ExpandedReport(
            **body.model_dump(),
            id=new_id("report"),
            linked_scan_id=scan_id,
            email=email,
            url=url,
            created_at=_now(),
        )
        try:
            self.ctx.store.create_expanded_report(report)
        except StoreError as e:
            logger.error("Saving expanded report %s for %s failed: %s", report.id, url, e)
            raise PersistenceFailed("Saving the expanded report failed") from e

        if self.ctx.notifier.send(report):
            sent_at = _now()
            try:
                self.ctx.store.mark_email_sent(report.id, sent_at)
                report = report.model_copy(update={"email_sent": True, "email_sent_at": sent_at})
            except StoreError as e:
                logger.error("Recording email dispatch for report %s failed: %s", report.id, e)

        return ExpandedReportResult(
            report=report,
            scan_count=ScanCount(
                current=self.ledger.count("expanded_report", email),
                max=self.ledger.limits["expanded_report"],
                limit_type="expanded_report",
            ),
        )

    def get_expanded_report(self, report_id: str) -> ExpandedReport:
        try:
            report = self.ctx.store.get_expanded_report(report_id)
        except StoreError as e:
            logger.error("Loading expanded report %s failed: %s", report_id, e)
            raise PersistenceFailed("Loading the expanded report failed") from e
        if report is None:
            raise NotFound("Expanded report not found")
        return report
