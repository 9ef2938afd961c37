from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError
from tenacity.wait import wait_base

from .llm import CompletionClient, CompletionError, MalformedCompletion, Message, complete_json
from .models import Analysis, ExpandedReportBody, Opportunity

logger = logging.getLogger(__name__)


def _system_prompt(partner: str) -> str:
    return (
        f"You are an expert in business analysis and AI implementation writing proposals on behalf "
        f"of {partner}, a specialized AI implementation company. You always answer with valid JSON "
        "and nothing else. Keep estimates realistic and conservative and make every section "
        "specific to the analyzed company."
    )


def build_prompt(url: str, analysis: Analysis, partner: str) -> str:
    opportunities = json.dumps(
        [o.model_dump(by_alias=True, exclude_none=True) for o in analysis.opportunities],
        indent=2,
        ensure_ascii=False,
    )
    return f"""Write an extended AI proposal for the company behind {url}, based on the basic analysis below.

Company description: {analysis.company_description}

AI opportunities:
{opportunities}

Return a JSON object with this shape:
{{
  "executiveSummary": "Short executive summary (100-150 words) written as a proposal from {partner}",
  "detailedOpportunities": [
    {{
      "id": 1,
      "title": "...",
      "description": "Concise company-specific description (80-120 words)",
      "implementationPlan": {{
        "phase1": {{"title": "...", "duration": "e.g. 2-3 weeks", "activities": ["...", "...", "..."]}},
        "phase2": {{"title": "...", "duration": "use timeToValue from the business case", "activities": ["...", "...", "..."]}},
        "phase3": {{"title": "...", "duration": "e.g. 4-6 weeks", "activities": ["...", "..."]}}
      }},
      "detailedBusinessCase": {{
        "financialProjection": {{
          "year1": {{
            "investment": "use implementationCost",
            "expectedSavings": "conservative estimate, e.g. €15,000 - €30,000",
            "expectedRevenueIncrease": "conservative estimate, e.g. €5,000 - €15,000",
            "totalValue": "expectedSavings + expectedRevenueIncrease",
            "roi": "realistic ROI, e.g. 50-120%",
            "breakEvenPoint": "e.g. 6-12 months",
            "summary": "How the savings and revenue growth are realized (40-60 words)"
          }}
        }},
        "riskAnalysis": {{
          "technicalRisks": ["...", "..."],
          "businessRisks": ["...", "..."],
          "mitigations": ["...", "..."]
        }}
      }},
      "technicalRequirements": ["...", "...", "..."],
      "successMetrics": ["...", "...", "..."],
      "partnerApproach": {{
        "whatWeDo": "What {partner} delivers for this opportunity (60-80 words)",
        "howWeDoIt": "How {partner} approaches it (60-80 words)",
        "whyChooseUs": "Why this company should choose {partner} (50-70 words)"
      }}
    }}
  ],
  "overallRecommendation": "Which opportunity to implement first and why (100-150 words)",
  "nextSteps": ["...", "...", "...", "..."]
}}

Critical instructions:
- Return ALL {len(analysis.opportunities)} opportunities from the basic analysis, in the same order
- Only a year-1 financial projection
- Three phases per plan, each with 2-3 activities
- Return only valid JSON, no other text"""


def default_next_steps(partner: str) -> list[str]:
    return [
        f"Contact {partner} for a no-obligation conversation",
        f"Plan a strategy session with {partner} to set priorities",
        f"{partner} prepares a detailed project plan",
        f"Identify internal stakeholders to work with {partner}",
        f"Start the implementation together with {partner}",
    ]


def default_partner_approach(partner: str) -> dict[str, str]:
    return {
        "whatWeDo": (
            f"{partner} implements this AI solution end to end through consultancy, development "
            "and implementation, tailored to your business processes."
        ),
        "howWeDoIt": (
            f"{partner} follows a proven, phased methodology. We work closely with your team and "
            "provide training and support throughout the implementation."
        ),
        "whyChooseUs": (
            f"{partner} combines extensive AI implementation experience with deep knowledge of "
            "business processes, delivering solutions that add value from day one."
        ),
    }


def default_plan(opp: Opportunity) -> dict[str, Any]:
    return {
        "phase1": {"title": "Preparation", "duration": "2-3 weeks", "activities": []},
        "phase2": {"title": "Implementation", "duration": opp.business_case.time_to_value, "activities": []},
        "phase3": {"title": "Launch", "duration": "4-6 weeks", "activities": []},
    }


def default_projection(opp: Opportunity) -> dict[str, Any]:
    return {
        "year1": {
            "investment": opp.business_case.implementation_cost,
            "expectedSavings": "€15,000 - €30,000",
            "expectedRevenueIncrease": "€5,000 - €15,000",
            "totalValue": "€20,000 - €45,000",
            "roi": opp.business_case.estimated_roi,
            "breakEvenPoint": "6-12 months",
            "summary": (
                "Cost savings come from automation and process optimization. Revenue growth "
                "comes from improved service."
            ),
        }
    }


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def merge_opportunity(base: Opportunity, detailed: dict[str, Any], position: int, partner: str) -> dict[str, Any]:
    """Overlay one detailed opportunity on its basic counterpart.

    Basic fields are the defaults; whatever the model supplied wins.
    """
    base_dump = base.model_dump(by_alias=True)
    merged: dict[str, Any] = {**base_dump, **detailed}
    merged["id"] = base.id
    merged["title"] = detailed.get("title") or base.title or f"AI Opportunity {position}"
    merged["description"] = detailed.get("description") or base.description
    merged["businessCase"] = {**base_dump["businessCase"], **_dict(detailed.get("businessCase"))}

    plan = _dict(detailed.get("implementationPlan"))
    fallback_plan = default_plan(base)
    merged["implementationPlan"] = {
        key: plan[key] if isinstance(plan.get(key), dict) else fallback_plan[key]
        for key in ("phase1", "phase2", "phase3")
    }

    dbc = _dict(detailed.get("detailedBusinessCase"))
    merged["detailedBusinessCase"] = {
        **base_dump["businessCase"],
        **dbc,
        "financialProjection": dbc.get("financialProjection") or default_projection(base),
        "riskAnalysis": dbc.get("riskAnalysis") or {"technicalRisks": [], "businessRisks": [], "mitigations": []},
    }
    merged["technicalRequirements"] = detailed.get("technicalRequirements") or []
    merged["successMetrics"] = detailed.get("successMetrics") or []
    merged["partnerApproach"] = detailed.get("partnerApproach") or default_partner_approach(partner)
    return merged


def fallback_report(analysis: Analysis, partner: str) -> ExpandedReportBody:
    """Fully static report built from the basic analysis alone."""
    detailed = []
    for opp in analysis.opportunities:
        bc = opp.business_case.model_dump(by_alias=True)
        detailed.append(
            {
                **opp.model_dump(by_alias=True),
                "implementationPlan": {
                    "phase1": {
                        "title": "Preparation and Planning",
                        "duration": "2-3 weeks",
                        "activities": [
                            "Requirements analysis and stakeholder interviews",
                            "Technical architecture design",
                            "Project planning and resource allocation",
                        ],
                    },
                    "phase2": {
                        "title": "Development and Implementation",
                        "duration": opp.business_case.time_to_value,
                        "activities": [
                            "AI model training and fine-tuning",
                            "Integration with existing systems",
                            "Testing and quality assurance",
                        ],
                    },
                    "phase3": {
                        "title": "Launch and Optimization",
                        "duration": "4-6 weeks",
                        "activities": [
                            "Pilot launch with a limited user group",
                            "Monitoring and feedback collection",
                        ],
                    },
                },
                "detailedBusinessCase": {
                    **bc,
                    "financialProjection": {
                        "year1": {
                            "investment": opp.business_case.implementation_cost,
                            "expectedSavings": "€15,000 - €30,000",
                            "expectedRevenueIncrease": "€5,000 - €15,000",
                            "totalValue": "€20,000 - €45,000",
                            "roi": "50-120%",
                            "breakEvenPoint": "6-12 months",
                            "summary": (
                                "Cost savings come from automating repetitive tasks and optimizing "
                                "processes. Revenue growth comes from higher customer satisfaction "
                                "and new sales opportunities."
                            ),
                        }
                    },
                    "riskAnalysis": {
                        "technicalRisks": [
                            "Integration challenges with existing systems",
                            "Data quality and availability",
                            "AI model performance in production",
                        ],
                        "businessRisks": [
                            "User acceptance and change management",
                            "ROI realization may vary",
                            "Competition and market changes",
                        ],
                        "mitigations": [
                            "Extensive testing and a pilot programme",
                            "Phased implementation with clear milestones",
                            "Continuous monitoring and adjustment",
                        ],
                    },
                },
                "technicalRequirements": [
                    "Cloud infrastructure (AWS/Azure/GCP)",
                    "API integrations with existing systems",
                    "Data pipeline for real-time processing",
                    "Security and compliance measures",
                ],
                "successMetrics": [
                    "User adoption rate",
                    "Hours saved per week",
                    "Cost savings per quarter",
                    "Customer satisfaction scores",
                    "Realized vs. projected ROI",
                ],
                "partnerApproach": default_partner_approach(partner),
            }
        )

    first = analysis.opportunities[0].title if analysis.opportunities else "the first AI opportunity"
    return ExpandedReportBody.model_validate(
        {
            "executiveSummary": (
                f"{partner} has carried out an extended analysis of the AI implementation "
                "opportunities for your company. Based on the website analysis we identified three "
                "strategic AI opportunities that can add significant value to your operations, and "
                f"{partner} is ready to implement them for you."
            ),
            "detailedOpportunities": detailed,
            "overallRecommendation": (
                f"{partner} recommends starting with {first}, as it combines the highest impact "
                "with a relatively short implementation. The remaining opportunities can be added "
                "in phases once it is live."
            ),
            "nextSteps": default_next_steps(partner),
        }
    )


class ReportExpander:
    def __init__(
        self,
        completion: CompletionClient,
        *,
        partner_name: str = "AI-Group",
        temperature: float = 0.7,
        max_attempts: int = 3,
        retry_wait: wait_base | None = None,
    ) -> None:
        self.completion = completion
        self.partner = partner_name
        self.temperature = temperature
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait

    def messages_for(self, url: str, analysis: Analysis) -> list[Message]:
        return [
            {"role": "system", "content": _system_prompt(self.partner)},
            {"role": "user", "content": build_prompt(url, analysis, self.partner)},
        ]

    def merge(self, raw: dict[str, Any], analysis: Analysis) -> ExpandedReportBody:
        detailed_raw = raw.get("detailedOpportunities")
        if not isinstance(detailed_raw, list):
            raise MalformedCompletion("Response has no detailedOpportunities list")

        merged = []
        for index, base in enumerate(analysis.opportunities):
            detailed = detailed_raw[index] if index < len(detailed_raw) else {}
            merged.append(merge_opportunity(base, _dict(detailed), index + 1, self.partner))

        first = analysis.opportunities[0].title if analysis.opportunities else "the first AI opportunity"
        next_steps = raw.get("nextSteps")
        try:
            return ExpandedReportBody.model_validate(
                {
                    "executiveSummary": raw.get("executiveSummary")
                    or "Extended analysis of AI implementation opportunities.",
                    "detailedOpportunities": merged,
                    "overallRecommendation": raw.get("overallRecommendation")
                    or f"We recommend starting with {first}.",
                    "nextSteps": next_steps if isinstance(next_steps, list) and next_steps else default_next_steps(self.partner),
                }
            )
        except ValidationError as e:
            raise MalformedCompletion(f"Detailed opportunities do not match the report schema: {e}") from e

    def expand(self, url: str, analysis: Analysis) -> ExpandedReportBody:
        try:
            raw = complete_json(
                self.completion,
                self.messages_for(url, analysis),
                temperature=self.temperature,
                max_attempts=self.max_attempts,
                wait=self.retry_wait,
            )
            return self.merge(raw, analysis)
        except CompletionError as e:
            logger.warning("Report expansion for %s fell back to static content: %s", url, e)
            return fallback_report(analysis, self.partner)
