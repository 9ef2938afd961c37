from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

LimitKind = Literal["scan", "expanded_report"]


class CamelModel(BaseModel):
    # JSON uses camelCase; python code uses snake_case attributes.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScanRequest(CamelModel):
    url: str | None = None


class ExpandedReportRequest(CamelModel):
    scan_id: str | None = None
    email: str | None = None
    url: str | None = None


class BusinessCase(CamelModel):
    potential_impact: str
    estimated_roi: str = Field(alias="estimatedROI")
    implementation_cost: str
    time_to_value: str
    benefits: list[str] = Field(default_factory=list)
    rationale: str | None = None
    key_metrics: list[str] | None = None


class Opportunity(CamelModel):
    id: int = Field(ge=1, le=3)
    title: str
    description: str
    business_case: BusinessCase


class Analysis(CamelModel):
    company_description: str
    opportunities: list[Opportunity] = Field(max_length=3)


class ScanRecord(Analysis):
    id: str
    url: str
    created_at: datetime
    identity: str | None = None


class ScanResponse(CamelModel):
    scan_id: str
    url: str
    company_description: str
    opportunities: list[Opportunity]
    created_at: datetime

    @classmethod
    def from_record(cls, record: ScanRecord) -> "ScanResponse":
        return cls(
            scan_id=record.id,
            url=record.url,
            company_description=record.company_description,
            opportunities=record.opportunities,
            created_at=record.created_at,
        )


class Phase(CamelModel):
    title: str
    duration: str
    activities: list[str] = Field(default_factory=list)


class ImplementationPlan(CamelModel):
    phase1: Phase
    phase2: Phase
    phase3: Phase


class FinancialYear(CamelModel):
    investment: str
    expected_savings: str
    expected_revenue_increase: str
    total_value: str
    roi: str
    break_even_point: str | None = None
    summary: str | None = None


class FinancialProjection(CamelModel):
    year1: FinancialYear


class RiskAnalysis(CamelModel):
    technical_risks: list[str] = Field(default_factory=list)
    business_risks: list[str] = Field(default_factory=list)
    mitigations: list[str] = Field(default_factory=list)


class DetailedBusinessCase(BusinessCase):
    financial_projection: FinancialProjection
    risk_analysis: RiskAnalysis


class PartnerApproach(CamelModel):
    what_we_do: str
    how_we_do_it: str
    why_choose_us: str


class DetailedOpportunity(Opportunity):
    implementation_plan: ImplementationPlan
    detailed_business_case: DetailedBusinessCase
    technical_requirements: list[str] = Field(default_factory=list)
    success_metrics: list[str] = Field(default_factory=list)
    partner_approach: PartnerApproach | None = None


class ExpandedReportBody(CamelModel):
    executive_summary: str
    detailed_opportunities: list[DetailedOpportunity]
    overall_recommendation: str
    next_steps: list[str] = Field(default_factory=list)


class ExpandedReport(ExpandedReportBody):
    id: str
    linked_scan_id: str | None = None
    email: str
    url: str
    email_sent: bool = False
    email_sent_at: datetime | None = None
    created_at: datetime


class Reachability(BaseModel):
    reachable: bool
    error: str | None = None


class LimitStatus(CamelModel):
    current_count: int
    max_limit: int
    limit_type: LimitKind


class ScanCount(CamelModel):
    current: int
    max: int
    limit_type: LimitKind


class ExpandedReportResponse(CamelModel):
    success: bool = True
    expanded_report_id: str
    email_sent: bool
    scan_count: ScanCount
