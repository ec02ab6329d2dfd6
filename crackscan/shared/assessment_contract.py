"""Crack assessment contract helpers.

This module documents the response shape the mobile app renders on its results
screen, plus the per-field defaults used when the hosted model does not
provide a value. It is intentionally stdlib-only so it can be imported anywhere
without heavy deps.

Internally, parsers work on a flat "partial" record keyed by dotted field
names (``dimensions.length``); `fill_defaults()` turns it into the nested
camelCase wire shape.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, TypedDict


ResponseShape = Literal["array_labels", "generated_text", "structured_object", "unrecognized"]


class Dimensions(TypedDict):
    length: str
    width: str
    depth: str


class RecommendedActions(TypedDict):
    shortTerm: List[str]
    longTerm: List[str]


class Urgency(TypedDict):
    level: str
    timeline: str


class CanonicalAssessment(TypedDict):
    """Results-screen contract: every field is always present and non-null."""

    severity: str
    crackType: str
    confidence: float
    description: str
    dimensions: Dimensions
    recommendedActions: RecommendedActions
    urgency: Urgency


class ErrorEnvelope(TypedDict):
    error: str


# Flat field names, in wire order. Parsers only ever set these keys.
FIELD_NAMES: Tuple[str, ...] = (
    "severity",
    "crackType",
    "confidence",
    "description",
    "dimensions.length",
    "dimensions.width",
    "dimensions.depth",
    "recommendedActions.shortTerm",
    "recommendedActions.longTerm",
    "urgency.level",
    "urgency.timeline",
)

SEVERITY_LEVELS: Tuple[str, ...] = ("Low", "Moderate", "High")

DEFAULT_CONFIDENCE = 0.50

DEFAULTS: Dict[str, Any] = {
    "severity": "Moderate",
    "crackType": "Structural Crack (Shear)",
    "confidence": DEFAULT_CONFIDENCE,
    "description": "No description available",
    "dimensions.length": "45cm",
    "dimensions.width": "2-3mm",
    "dimensions.depth": "5-8mm",
    "recommendedActions.shortTerm": [
        "Mark and monitor crack length and width weekly",
        "Limit use of affected area until inspected",
    ],
    "recommendedActions.longTerm": [
        "Seal the crack with appropriate epoxy filler",
        "Engage a structural engineer for on-site assessment",
        "Check for water infiltration behind the crack",
    ],
    "urgency.level": "Moderate",
    "urgency.timeline": "1-2 weeks",
}


def is_number(value: Any) -> bool:
    """True for real, finite numbers (bool is not a number here)."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(float(value))
    except OverflowError:
        # ints beyond float range (long JSON integer literals)
        return False


def normalize_confidence(value: Any) -> Optional[float]:
    """Clamp a numeric confidence to [0, 1]; None when it is not a valid number."""

    if not is_number(value):
        return None
    return max(0.0, min(1.0, float(value)))


def clean_text(value: Any) -> Optional[str]:
    """Coerce a scalar to a stripped, non-empty string (None otherwise)."""

    if value is None or isinstance(value, (dict, list, tuple)):
        return None
    text = str(value).strip()
    return text or None


def clean_steps(value: Any) -> Optional[List[str]]:
    """Coerce a list of actions (or a single action string) to non-empty strings."""

    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return None
    steps = [text for text in (clean_text(item) for item in value) if text]
    return steps or None


def _is_present(field: str, value: Any) -> bool:
    if field == "confidence":
        return normalize_confidence(value) is not None
    if field.startswith("recommendedActions."):
        return clean_steps(value) is not None
    return clean_text(value) is not None


def missing_fields(partial: Mapping[str, Any]) -> List[str]:
    return [field for field in FIELD_NAMES if not _is_present(field, partial.get(field))]


def fill_defaults(partial: Mapping[str, Any]) -> Tuple[CanonicalAssessment, List[str]]:
    """Compose the canonical record, defaulting each missing field on its own.

    Returns the record and the list of fields that were defaulted.
    """

    defaulted = missing_fields(partial)
    values: Dict[str, Any] = {}
    for field in FIELD_NAMES:
        if field in defaulted:
            value = DEFAULTS[field]
            values[field] = list(value) if isinstance(value, list) else value
        elif field == "confidence":
            values[field] = normalize_confidence(partial[field])
        elif field.startswith("recommendedActions."):
            values[field] = clean_steps(partial[field])
        else:
            values[field] = clean_text(partial[field])

    assessment: CanonicalAssessment = {
        "severity": values["severity"],
        "crackType": values["crackType"],
        "confidence": values["confidence"],
        "description": values["description"],
        "dimensions": {
            "length": values["dimensions.length"],
            "width": values["dimensions.width"],
            "depth": values["dimensions.depth"],
        },
        "recommendedActions": {
            "shortTerm": values["recommendedActions.shortTerm"],
            "longTerm": values["recommendedActions.longTerm"],
        },
        "urgency": {
            "level": values["urgency.level"],
            "timeline": values["urgency.timeline"],
        },
    }
    return assessment, defaulted


def default_assessment() -> CanonicalAssessment:
    assessment, _ = fill_defaults({})
    return assessment
