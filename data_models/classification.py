"""Classification result types produced by the scam classifier.

The language model is asked for a JSON object matching ``LLMScamAnalysis``.
Whatever comes back is repaired into a ``ClassificationResult`` whose
``outcome`` is one of a closed set, so callers branch on the outcome
instead of probing optional fields.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from data_models.scam_report import ScamCategory


class ClassificationOutcome(str, Enum):
    """Closed set of classification outcomes."""

    INCIDENT = "incident"
    NOT_INCIDENT = "not_incident"
    FAILED = "failed"


def _string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    return []


class LLMScamAnalysis(BaseModel):
    """Raw JSON payload returned by the model, leniently coerced."""

    isScamStory: bool = False
    confidence: float = 0.0
    country: str | None = "Unknown"
    city: str | None = None
    specificLocation: str | None = None
    scamType: str | None = "other"
    scamMethods: list[str] = Field(default_factory=list)
    targetDemographics: list[str] = Field(default_factory=list)
    moneyLost: float | None = None
    currency: str | None = None
    warningSignals: list[str] = Field(default_factory=list)
    preventionTips: list[str] = Field(default_factory=list)
    resolution: str | None = None
    summary: str | None = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value: Any) -> float:
        try:
            confidence = float(value)
        except (TypeError, ValueError):
            return 0.0
        return min(max(confidence, 0.0), 1.0)

    @field_validator("moneyLost", mode="before")
    @classmethod
    def parse_money(cls, value: Any) -> float | None:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, str):
            value = value.replace(",", "").strip().lstrip("$€£¥")
        try:
            amount = float(value)
        except (TypeError, ValueError):
            return None
        return amount if amount >= 0 else None

    @field_validator(
        "scamMethods", "targetDemographics", "warningSignals", "preventionTips", mode="before"
    )
    @classmethod
    def coerce_lists(cls, value: Any) -> list[str]:
        return _string_list(value)

    @field_validator("isScamStory", mode="before")
    @classmethod
    def coerce_flag(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "yes", "1")
        return bool(value)


class ClassificationResult(BaseModel):
    """Repaired classification of one piece of content."""

    outcome: ClassificationOutcome
    is_incident: bool = False
    confidence: float = Field(default=0.0, ge=0, le=1)
    category: ScamCategory = ScamCategory.OTHER
    country: str = "Unknown"
    city: str | None = None
    specific_location: str | None = None
    scam_methods: list[str] = Field(default_factory=list)
    target_demographics: list[str] = Field(default_factory=list)
    loss_amount: float | None = None
    currency: str | None = None
    warning_signals: list[str] = Field(default_factory=list)
    prevention_tips: list[str] = Field(default_factory=list)
    resolution: str | None = None
    summary: str = ""
    error: str | None = None

    @property
    def has_country(self) -> bool:
        return bool(self.country) and self.country.strip().lower() not in ("unknown", "none", "n/a")

    @classmethod
    def safe_default(cls, error: str) -> "ClassificationResult":
        """Build the fallback returned when the model call cannot be used."""
        return cls(
            outcome=ClassificationOutcome.FAILED,
            is_incident=False,
            confidence=0.0,
            category=ScamCategory.OTHER,
            country="Unknown",
            summary="API error - could not analyze",
            error=error,
        )

    @classmethod
    def from_analysis(cls, analysis: LLMScamAnalysis) -> "ClassificationResult":
        """Repair a raw model payload into a classification result."""
        try:
            category = ScamCategory((analysis.scamType or "other").strip().lower())
        except ValueError:
            category = ScamCategory.OTHER

        country = (analysis.country or "").strip() or "Unknown"
        is_incident = analysis.isScamStory
        return cls(
            outcome=ClassificationOutcome.INCIDENT if is_incident else ClassificationOutcome.NOT_INCIDENT,
            is_incident=is_incident,
            confidence=analysis.confidence if is_incident else 0.0,
            category=category,
            country=country,
            city=(analysis.city or "").strip() or None,
            specific_location=(analysis.specificLocation or "").strip() or None,
            scam_methods=analysis.scamMethods,
            target_demographics=analysis.targetDemographics,
            loss_amount=analysis.moneyLost,
            currency=(analysis.currency or "").strip().upper() or None,
            warning_signals=analysis.warningSignals,
            prevention_tips=analysis.preventionTips,
            resolution=analysis.resolution,
            summary=analysis.summary or "",
        )
