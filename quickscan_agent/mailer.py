from __future__ import annotations

import logging
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from .models import DetailedOpportunity, ExpandedReport

logger = logging.getLogger(__name__)

REPORT_TITLE = "Extended AI Business Quickscan"


class EmailProvider(ABC):
    @abstractmethod
    def send_email(self, *, from_addr: str, to_addr: str, subject: str, html_body: str) -> None:
        """Send one message. Raises on failure."""
        raise NotImplementedError


class SMTPEmailProvider(EmailProvider):
    """
    SMTP-based EmailProvider.

    Does not read environment variables; callers pass host/port/credentials.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str | None = None,
        password: str | None = None,
        *,
        use_ssl: bool = False,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.timeout = timeout

    def send_email(self, *, from_addr: str, to_addr: str, subject: str, html_body: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["From"] = from_addr
        msg["To"] = to_addr
        msg["Subject"] = subject
        msg.attach(MIMEText("This message contains HTML content. Please view in an HTML-capable client.", "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        if self.use_ssl:
            smtp: smtplib.SMTP = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        else:
            smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            if not self.use_ssl:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.sendmail(from_addr, [to_addr], msg.as_string())
        finally:
            try:
                smtp.quit()
            except smtplib.SMTPException:
                # Sending already succeeded or raised.
                pass


def _items(values: list[str]) -> str:
    return "".join(f"<li>{escape(v)}</li>" for v in values)


def _opportunity_html(index: int, opp: DetailedOpportunity) -> str:
    bc = opp.detailed_business_case
    year1 = bc.financial_projection.year1
    plan = opp.implementation_plan
    phases = "".join(
        f'<div class="phase"><strong>{escape(p.title)}</strong> ({escape(p.duration)})<ul>{_items(p.activities)}</ul></div>'
        for p in (plan.phase1, plan.phase2, plan.phase3)
    )
    return f"""
<div class="opportunity">
  <h3>{index}. {escape(opp.title)}</h3>
  <p>{escape(opp.description)}</p>
  <table>
    <tr><th>Impact</th><th>ROI</th><th>Investment</th><th>Time to value</th></tr>
    <tr><td>{escape(bc.potential_impact)}</td><td>{escape(bc.estimated_roi)}</td>
        <td>{escape(bc.implementation_cost)}</td><td>{escape(bc.time_to_value)}</td></tr>
  </table>
  <h4>Implementation plan</h4>
  {phases}
  <h4>Year 1 projection</h4>
  <p>Expected savings: {escape(year1.expected_savings)}<br>
     Expected revenue increase: {escape(year1.expected_revenue_increase)}<br>
     Total value: {escape(year1.total_value)} &middot; ROI: {escape(year1.roi)}</p>
  <h4>Risks</h4>
  <ul>{_items(bc.risk_analysis.technical_risks + bc.risk_analysis.business_risks)}</ul>
  <h4>Mitigations</h4>
  <ul>{_items(bc.risk_analysis.mitigations)}</ul>
  <h4>Technical requirements</h4>
  <ul>{_items(opp.technical_requirements)}</ul>
  <h4>Success metrics</h4>
  <ul>{_items(opp.success_metrics)}</ul>
</div>"""


def render_report_html(report: ExpandedReport, banner: str | None = None) -> str:
    opportunities = "".join(_opportunity_html(i + 1, o) for i, o in enumerate(report.detailed_opportunities))
    banner_html = f'<p class="banner">{escape(banner)}</p>' if banner else ""
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<style>
  body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
  .container {{ max-width: 800px; margin: 0 auto; padding: 20px; }}
  .opportunity {{ background: #fff; padding: 20px; margin-bottom: 20px; border-left: 4px solid #667eea; }}
  .phase {{ background: #f0f0f0; padding: 10px; margin: 8px 0; }}
  .banner {{ background: #e3f2fd; padding: 10px; }}
  table {{ width: 100%; border-collapse: collapse; }}
  th, td {{ padding: 8px; text-align: left; border-bottom: 1px solid #ddd; }}
</style>
</head>
<body>
<div class="container">
  <h1>{REPORT_TITLE}</h1>
  {banner_html}
  <p>Analyzed website: {escape(report.url)}</p>
  <h2>Executive summary</h2>
  <p>{escape(report.executive_summary)}</p>
  <h2>AI opportunities</h2>
  {opportunities}
  <h2>Recommendation</h2>
  <p>{escape(report.overall_recommendation)}</p>
  <h2>Next steps</h2>
  <ol>{_items(report.next_steps)}</ol>
</div>
</body>
</html>"""


class Notifier:
    """Best-effort delivery of expanded reports.

    The requester's copy decides the outcome; the operator copy is extra and
    its failure is only logged.
    """

    def __init__(self, provider: EmailProvider | None, *, from_addr: str | None, operator_addr: str | None) -> None:
        self.provider = provider
        self.from_addr = from_addr
        self.operator_addr = operator_addr

    def send(self, report: ExpandedReport) -> bool:
        if self.provider is None or not self.from_addr:
            logger.info("SMTP not configured; report %s not emailed", report.id)
            return False

        subject = f"{REPORT_TITLE} - {report.url}"
        try:
            self.provider.send_email(
                from_addr=self.from_addr,
                to_addr=report.email,
                subject=subject,
                html_body=render_report_html(report),
            )
        except Exception:
            logger.exception("Sending report %s to requester failed", report.id)
            return False

        if self.operator_addr:
            try:
                self.provider.send_email(
                    from_addr=self.from_addr,
                    to_addr=self.operator_addr,
                    subject=f"[Internal copy] {subject} (for {report.email})",
                    html_body=render_report_html(
                        report, banner=f"Internal copy: this report was sent to {report.email}."
                    ),
                )
            except Exception:
                logger.exception("Sending operator copy of report %s failed", report.id)

        return True
