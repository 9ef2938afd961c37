from __future__ import annotations

import logging
from typing import Any

from tenacity.wait import wait_base

from .fetcher import MAX_TEXT_CHARS, WebClient
from .llm import CompletionClient, CompletionError, MalformedCompletion, Message, complete_json
from .models import Analysis
from .url_utils import company_name_of, domain_of

logger = logging.getLogger(__name__)

OPPORTUNITY_COUNT = 3

DEFAULT_IMPACT = "Medium"
DEFAULT_ROI = "150-250%"
DEFAULT_COST = "€10,000 - €20,000"
DEFAULT_TIME_TO_VALUE = "2-3 months"
DEFAULT_RATIONALE = (
    "This AI opportunity delivers concrete value for the business by automating "
    "and optimizing existing processes."
)

SYSTEM_PROMPT = (
    "You are an expert in business analysis and AI implementation. You always answer "
    "with valid JSON and nothing else. You are critical and only return AI opportunities "
    "that are DIRECTLY and SPECIFICALLY relevant to the analyzed company; avoid generic "
    "opportunities that do not match its actual activities."
)


def _as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, int, float, bool)):
        s = str(value).strip()
        return [s] if s else []
    if isinstance(value, list):
        out: list[str] = []
        for item in value:
            if item is None:
                continue
            s = str(item).strip()
            if s:
                out.append(s)
        return out
    return [str(value)]


def _text(value: Any, default: str) -> str:
    if value is None:
        return default
    s = str(value).strip()
    return s or default


def build_prompt(url: str, website_text: str) -> str:
    return f"""Analyze the following website content and return a detailed analysis in JSON format.

Website URL: {url}
Website content (first {MAX_TEXT_CHARS} characters):
{website_text}

Return a JSON object with this shape:
{{
  "companyDescription": "A thorough description of the company based on the website content: services, audience and market position (at least 150 words)",
  "opportunities": [
    {{
      "id": 1,
      "title": "Title of the AI opportunity",
      "description": "Why this AI opportunity is relevant for this specific company (at least 100 words)",
      "businessCase": {{
        "potentialImpact": "Low/Medium/High/Very High",
        "estimatedROI": "e.g. 200-300%",
        "implementationCost": "e.g. €15,000 - €25,000",
        "timeToValue": "e.g. 2-3 months",
        "benefits": ["Concrete benefit 1", "Concrete benefit 2", "Concrete benefit 3", "Concrete benefit 4"],
        "rationale": "Why this ROI estimate is realistic, grounded in the company's activities (at least 80 words)",
        "keyMetrics": ["Measurable metric 1", "Measurable metric 2", "Measurable metric 3"]
      }}
    }}
  ]
}}

Important:
- Return exactly {OPPORTUNITY_COUNT} AI opportunities that are SPECIFIC and DIRECTLY relevant to this company
- Base the analysis strictly on the actual website content
- Avoid generic opportunities such as "predictive maintenance" or "fraud detection" unless explicitly relevant
- Keep business cases realistic and grounded in what the company actually does
- Return only valid JSON, no text before or after"""


def fallback_analysis(url: str) -> dict[str, Any]:
    """Static analysis used whenever the completion service cannot be used."""
    name = company_name_of(url)
    return {
        "companyDescription": (
            f"{name} is an innovative company active in the digital market. Based on the website "
            "analysis, the company focuses on delivering high-quality services to both B2B and "
            "B2C customers."
        ),
        "opportunities": [
            {
                "id": 1,
                "title": "Customer Service Chatbot",
                "description": (
                    "Deploy an AI-driven chatbot that answers customer questions 24/7, handles "
                    "bookings and provides general information."
                ),
                "businessCase": {
                    "potentialImpact": "High",
                    "estimatedROI": "200-300%",
                    "implementationCost": "€15,000 - €25,000",
                    "timeToValue": "2-3 months",
                    "benefits": [
                        "24/7 availability for customers",
                        "40-60% fewer routine customer questions",
                        "Higher customer satisfaction through faster responses",
                        "Lower customer service staffing costs",
                    ],
                    "rationale": (
                        "A chatbot typically resolves 40-60% of routine questions, saving roughly "
                        "20-30 hours of support time per week. At €50-€75 per hour that is "
                        "€50,000-€75,000 per year, so the investment pays back within 3-6 months."
                    ),
                    "keyMetrics": [
                        "40-60% reduction in manual customer questions",
                        "€50,000-€75,000 annual cost savings",
                        "20-30 hours per week saved in customer service",
                    ],
                },
            },
            {
                "id": 2,
                "title": "Predictive Sales Analytics",
                "description": (
                    "Use AI to analyze sales patterns and forecast future demand."
                ),
                "businessCase": {
                    "potentialImpact": "Very High",
                    "estimatedROI": "250-400%",
                    "implementationCost": "€20,000 - €35,000",
                    "timeToValue": "3-4 months",
                    "benefits": [
                        "Optimized stock levels (20-30% reduction)",
                        "More sales through better product recommendations",
                        "Improved cash flow through smarter inventory management",
                        "Data-driven decision making",
                    ],
                    "rationale": (
                        "Better demand forecasts reduce inventory by 20-30% while personalized "
                        "recommendations can lift revenue by 10-15%. For a company with €0.5-1M "
                        "annual revenue this is worth €70,000-€190,000 per year."
                    ),
                    "keyMetrics": [
                        "20-30% lower inventory levels",
                        "10-15% revenue growth from recommendations",
                        "€70,000-€190,000 total annual value",
                    ],
                },
            },
            {
                "id": 3,
                "title": "Automated Content Generation",
                "description": (
                    "AI helps produce marketing content, product descriptions and social media posts."
                ),
                "businessCase": {
                    "potentialImpact": "Medium to High",
                    "estimatedROI": "150-250%",
                    "implementationCost": "€10,000 - €18,000",
                    "timeToValue": "1-2 months",
                    "benefits": [
                        "15-20 hours saved per week",
                        "Consistent tone of voice across all content",
                        "Faster time-to-market for new products",
                        "More time for strategic marketing work",
                    ],
                    "rationale": (
                        "Saving 15-20 hours per week of marketing time at €40-€60 per hour is worth "
                        "€30,000-€60,000 per year; the investment pays back within 4-8 months."
                    ),
                    "keyMetrics": [
                        "15-20 hours per week saved",
                        "€30,000-€60,000 annual value from time savings",
                        "50% faster time-to-market for new products",
                    ],
                },
            },
        ],
    }


def _normalize_opportunity(raw: Any, position: int) -> dict[str, Any]:
    opp = raw if isinstance(raw, dict) else {}
    bc = opp.get("businessCase")
    bc = bc if isinstance(bc, dict) else {}

    opp_id = opp.get("id")
    if not isinstance(opp_id, int) or isinstance(opp_id, bool) or not 1 <= opp_id <= OPPORTUNITY_COUNT:
        opp_id = position

    return {
        "id": opp_id,
        "title": _text(opp.get("title"), f"AI Opportunity {position}"),
        "description": _text(opp.get("description"), ""),
        "businessCase": {
            "potentialImpact": _text(bc.get("potentialImpact"), DEFAULT_IMPACT),
            "estimatedROI": _text(bc.get("estimatedROI"), DEFAULT_ROI),
            "implementationCost": _text(bc.get("implementationCost"), DEFAULT_COST),
            "timeToValue": _text(bc.get("timeToValue"), DEFAULT_TIME_TO_VALUE),
            "benefits": _as_str_list(bc.get("benefits")),
            "rationale": _text(bc.get("rationale"), DEFAULT_RATIONALE),
            "keyMetrics": _as_str_list(bc.get("keyMetrics")),
        },
    }


def normalize_analysis(raw: dict[str, Any], url: str) -> Analysis:
    """Clamp model output to the Analysis schema.

    A response without a usable opportunity list is malformed. Short lists are
    topped up from the fallback set so there are always exactly three.
    """
    opportunities = raw.get("opportunities")
    if opportunities is None:
        opportunities = raw.get("aiOpportunities")
    if not isinstance(opportunities, list) or not opportunities:
        raise MalformedCompletion("Response has no opportunities list")

    fallback = fallback_analysis(url)
    items = list(opportunities[:OPPORTUNITY_COUNT])
    for extra in fallback["opportunities"][len(items):]:
        items.append(extra)

    normalized = [_normalize_opportunity(item, i + 1) for i, item in enumerate(items)]
    # Keep ids unique after defaulting.
    if len({o["id"] for o in normalized}) != len(normalized):
        for i, o in enumerate(normalized):
            o["id"] = i + 1

    return Analysis.model_validate(
        {
            "companyDescription": _text(
                raw.get("companyDescription"),
                f"{domain_of(url)} is an innovative company active in the digital market.",
            ),
            "opportunities": normalized,
        }
    )


class OpportunityAnalyzer:
    def __init__(
        self,
        web: WebClient,
        completion: CompletionClient,
        *,
        temperature: float = 0.7,
        max_attempts: int = 3,
        retry_wait: wait_base | None = None,
    ) -> None:
        self.web = web
        self.completion = completion
        self.temperature = temperature
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait

    def messages_for(self, url: str, website_text: str) -> list[Message]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(url, website_text)},
        ]

    def analyze(self, url: str) -> Analysis:
        website_text = self.web.fetch_text(url)
        try:
            raw = complete_json(
                self.completion,
                self.messages_for(url, website_text),
                temperature=self.temperature,
                max_attempts=self.max_attempts,
                wait=self.retry_wait,
            )
            return normalize_analysis(raw, url)
        except CompletionError as e:
            logger.warning("Opportunity analysis for %s fell back to static content: %s", url, e)
            return normalize_analysis(fallback_analysis(url), url)
