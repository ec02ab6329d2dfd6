"""Normalize raw hosted-model output into a `CanonicalAssessment`.

The hosted crack model has been observed to return three undocumented shapes:

- classification output: ``[{"label": ..., "score": ...}, ...]``
- generation output: ``{"generated_text": ...}`` or ``{"text": ...}``
- an object that already looks like the app contract (with aliased keys)

`classify_shape()` picks exactly one parser; the parser returns a partial
record plus the fields it actually matched; `fill_defaults()` completes the
record. Anything else (scalars, null, empty lists) is not an error: the caller
simply gets the all-defaults assessment.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from crackscan.shared.assessment_contract import (
    CanonicalAssessment,
    ResponseShape,
    fill_defaults,
    is_number,
    normalize_confidence,
)
from crackscan.shared.knowledge_base import (
    DEFAULT_KNOWLEDGE_BASE,
    KnowledgeBaseEntry,
    match_entry,
)


LOGGER = logging.getLogger(__name__)

MAX_DESCRIPTION_CHARS = 2000

SEVERITY_RE = re.compile(r"severity[:\s]+([a-z0-9]+)")
CONFIDENCE_RE = re.compile(r"confidence[:\s]+(\d+(?:\.\d+)?%?|\.\d+%?)")
DIMENSION_RES: Dict[str, "re.Pattern[str]"] = {
    "dimensions.length": re.compile(r"length[:\s]+(\d+(?:\.\d+)?\s*(?:cm|mm|m)?)"),
    "dimensions.width": re.compile(r"width[:\s]+(\d+(?:\.\d+)?\s*(?:mm|cm)?)"),
    "dimensions.depth": re.compile(r"depth[:\s]+(\d+(?:\.\d+)?\s*(?:mm|cm)?)"),
}
ACTION_SPLIT_RE = re.compile(r"(?:recommend|action|suggest|short-term|long-term)", re.IGNORECASE)


@dataclass(frozen=True)
class ParseResult:
    fields: Dict[str, Any] = field(default_factory=dict)
    matched: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NormalizationReport:
    shape: ResponseShape
    matched: Tuple[str, ...]
    defaulted: Tuple[str, ...]
    knowledge_base_match: Optional[Tuple[str, ...]] = None


def classify_shape(raw: Any) -> ResponseShape:
    # Order matters: first matching rule wins.
    if isinstance(raw, list) and raw and isinstance(raw[0], dict) and raw[0].get("label"):
        return "array_labels"
    if isinstance(raw, dict) and (raw.get("generated_text") or raw.get("text")):
        return "generated_text"
    if isinstance(raw, dict):
        return "structured_object"
    return "unrecognized"


def severity_from_label(label: str) -> str:
    lower = label.lower()
    if "severe" in lower or "high" in lower:
        return "High"
    if "moderate" in lower:
        return "Moderate"
    if "low" in lower or "minor" in lower:
        return "Low"
    return "Moderate"


def _percent(score: Any) -> int:
    # Round half up, matching how the score is shown on the results screen.
    value = normalize_confidence(score) or 0.0
    return int(math.floor(value * 100.0 + 0.5))


def _set(fields: Dict[str, Any], matched: List[str], name: str, value: Any) -> None:
    fields[name] = value
    if name not in matched:
        matched.append(name)


def parse_array_labels(
    raw: List[Any],
    knowledge_base: Sequence[KnowledgeBaseEntry] = DEFAULT_KNOWLEDGE_BASE,
) -> Tuple[ParseResult, Optional[KnowledgeBaseEntry]]:
    """Use the top prediction, then let the first matching KB entry override it."""

    top = raw[0]
    label = str(top.get("label"))
    score = top.get("score")

    fields: Dict[str, Any] = {}
    matched: List[str] = []
    _set(fields, matched, "crackType", label)
    if is_number(score):
        _set(fields, matched, "confidence", float(score))
    _set(fields, matched, "severity", severity_from_label(label))
    _set(fields, matched, "description", f"Predicted: {label} (score {_percent(score)}%)")

    entry = match_entry(label, knowledge_base)
    if entry is not None:
        for name, value in entry.as_partial().items():
            _set(fields, matched, name, value)

    return ParseResult(fields=fields, matched=tuple(matched)), entry


def parse_generated_text(raw: Dict[str, Any]) -> ParseResult:
    """Best-effort extraction from generative model text.

    Each field is searched independently; extraction errors are ignored and
    whatever was already captured is kept. Severity tokens are passed through
    unvalidated and long-term actions are never derived from text.
    """

    txt = raw.get("generated_text")
    if txt is None:
        txt = raw.get("text")
    text = str(txt)

    fields: Dict[str, Any] = {}
    matched: List[str] = []
    _set(fields, matched, "description", text[:MAX_DESCRIPTION_CHARS])

    try:
        low = text.lower()

        sev = SEVERITY_RE.search(low)
        if sev:
            _set(fields, matched, "severity", sev.group(1))

        conf = CONFIDENCE_RE.search(low)
        if conf:
            token = conf.group(1)
            try:
                value = float(token.rstrip("%"))
            except ValueError:
                value = None
            if value is not None:
                if token.endswith("%"):
                    value = value / 100.0
                _set(fields, matched, "confidence", value)

        for name, pattern in DIMENSION_RES.items():
            dim = pattern.search(low)
            if dim:
                _set(fields, matched, name, dim.group(1).strip())

        segments = ACTION_SPLIT_RE.split(text)[1:]
        steps = [s.strip() for s in segments if s.strip()][:2]
        if steps:
            _set(fields, matched, "recommendedActions.shortTerm", steps)
    except Exception as exc:  # noqa: BLE001 - best effort only
        LOGGER.debug("free-text extraction stopped early: %s", exc)

    return ParseResult(fields=fields, matched=tuple(matched))


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _sub(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = raw.get(key)
    return value if isinstance(value, dict) else {}


def parse_structured_object(raw: Dict[str, Any]) -> ParseResult:
    """Map an app-like object onto the contract, resolving known key aliases."""

    dims = _sub(raw, "dimensions")
    actions = _sub(raw, "recommendedActions")

    fields: Dict[str, Any] = {}
    matched: List[str] = []

    candidates = {
        "severity": _first(raw.get("severity"), raw.get("severity_level")),
        "crackType": _first(raw.get("crackType"), raw.get("label"), raw.get("prediction")),
        "confidence": _first(raw.get("confidence"), raw.get("score")),
        "description": _first(raw.get("description"), raw.get("notes")),
        "dimensions.length": _first(dims.get("length"), raw.get("length")),
        "dimensions.width": _first(dims.get("width"), raw.get("width")),
        "dimensions.depth": _first(dims.get("depth"), raw.get("depth")),
        "recommendedActions.shortTerm": _first(
            actions.get("shortTerm"), raw.get("short_term_recommendations")
        ),
        "recommendedActions.longTerm": _first(
            actions.get("longTerm"), raw.get("long_term_recommendations")
        ),
    }
    for name, value in candidates.items():
        if value is not None:
            _set(fields, matched, name, value)

    # Urgency is resolved as a pair, and only when nothing has set it yet.
    if fields.get("urgency.level") is None and fields.get("urgency.timeline") is None:
        urgency = _sub(raw, "urgency")
        level = _first(urgency.get("level"), raw.get("urgency_level"))
        timeline = _first(urgency.get("timeline"), raw.get("urgency_timeline"))
        if level is not None:
            _set(fields, matched, "urgency.level", level)
        if timeline is not None:
            _set(fields, matched, "urgency.timeline", timeline)

    return ParseResult(fields=fields, matched=tuple(matched))


def normalize_with_report(
    raw: Any,
    knowledge_base: Sequence[KnowledgeBaseEntry] = DEFAULT_KNOWLEDGE_BASE,
) -> Tuple[CanonicalAssessment, NormalizationReport]:
    shape = classify_shape(raw)
    entry: Optional[KnowledgeBaseEntry] = None

    if shape == "array_labels":
        result, entry = parse_array_labels(raw, knowledge_base)
    elif shape == "generated_text":
        result = parse_generated_text(raw)
    elif shape == "structured_object":
        result = parse_structured_object(raw)
    else:
        result = ParseResult()

    assessment, defaulted = fill_defaults(result.fields)
    report = NormalizationReport(
        shape=shape,
        matched=result.matched,
        defaulted=tuple(defaulted),
        knowledge_base_match=entry.keywords if entry is not None else None,
    )
    LOGGER.debug(
        "normalized shape=%s matched=%s defaulted=%s kb=%s",
        report.shape,
        list(report.matched),
        list(report.defaulted),
        report.knowledge_base_match,
    )
    return assessment, report


def normalize_response(
    raw: Any,
    knowledge_base: Sequence[KnowledgeBaseEntry] = DEFAULT_KNOWLEDGE_BASE,
) -> CanonicalAssessment:
    assessment, _ = normalize_with_report(raw, knowledge_base)
    return assessment
