"""Keyword-indexed crack remediation knowledge base.

Entries are scanned in order and the first entry with a keyword contained in
the predicted label wins, so the order of `DEFAULT_KNOWLEDGE_BASE` (or of the
JSON file it is replaced with) is part of the behaviour.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from crackscan.shared.assessment_contract import SEVERITY_LEVELS


@dataclass(frozen=True)
class KnowledgeBaseEntry:
    keywords: Tuple[str, ...]
    severity: str
    length: str
    width: str
    depth: str
    description: str
    short_term: Tuple[str, ...]
    long_term: Tuple[str, ...]
    urgency_level: str
    urgency_timeline: str

    def matches(self, label: str) -> bool:
        lower = label.lower()
        return any(kw.lower() in lower for kw in self.keywords)

    def as_partial(self) -> Dict[str, Any]:
        """Fields this entry overrides, keyed like a partial assessment."""

        return {
            "severity": self.severity,
            "description": self.description,
            "dimensions.length": self.length,
            "dimensions.width": self.width,
            "dimensions.depth": self.depth,
            "recommendedActions.shortTerm": list(self.short_term),
            "recommendedActions.longTerm": list(self.long_term),
            "urgency.level": self.urgency_level,
            "urgency.timeline": self.urgency_timeline,
        }


KnowledgeBase = Tuple[KnowledgeBaseEntry, ...]


DEFAULT_KNOWLEDGE_BASE: KnowledgeBase = (
    KnowledgeBaseEntry(
        keywords=("hairline", "fine", "surface"),
        severity="Low",
        length="15-30cm",
        width="<1mm",
        depth="Surface level",
        description=(
            "Hairline surface crack detected, typically caused by shrinkage or "
            "superficial stress."
        ),
        short_term=(
            "Monitor crack once per quarter",
            "Seal with acrylic caulk to prevent moisture entry",
        ),
        long_term=(
            "Repaint affected area with flexible coating",
            "Inspect for repeated patterns during seasonal changes",
        ),
        urgency_level="Low",
        urgency_timeline="Monitor within 3 months",
    ),
    KnowledgeBaseEntry(
        keywords=("structural", "shear", "diagonal", "load"),
        severity="High",
        length="60-120cm",
        width="3-6mm",
        depth="Penetrating",
        description=(
            "Structural crack with diagonal shear characteristics, often tied to "
            "load redistribution or settlement."
        ),
        short_term=(
            "Install temporary shoring if the crack crosses load paths",
            "Mark both ends and monitor daily for growth",
        ),
        long_term=(
            "Schedule structural engineer inspection within one week",
            "Inject epoxy to restore shear capacity after evaluation",
        ),
        urgency_level="High",
        urgency_timeline="Inspect within 7 days",
    ),
    KnowledgeBaseEntry(
        keywords=("vertical", "settlement", "foundation", "column"),
        severity="Moderate",
        length="40-90cm",
        width="2-4mm",
        depth="Beyond plaster",
        description=(
            "Vertical settlement-type crack, which can originate from foundation "
            "or differential movement."
        ),
        short_term=(
            "Document width with gauge markers weekly",
            "Check adjacent openings (doors/windows) for misalignment",
        ),
        long_term=(
            "Evaluate foundation drainage and backfill conditions",
            "Consider underpinning if movement persists",
        ),
        urgency_level="Moderate",
        urgency_timeline="Assess within 2-3 weeks",
    ),
    KnowledgeBaseEntry(
        keywords=("horizontal", "pressure", "expansion", "rebar"),
        severity="High",
        length="80-150cm",
        width="4-8mm",
        depth="Reinforcement exposed",
        description="Horizontal crack indicating lateral pressure or reinforcement corrosion.",
        short_term=(
            "Relieve external pressure if caused by soil/water",
            "Clean and protect any exposed reinforcement",
        ),
        long_term=(
            "Engineer to design reinforcement upgrade",
            "Install drainage or relief joints to prevent recurrence",
        ),
        urgency_level="High",
        urgency_timeline="Stabilize within 1 week",
    ),
    KnowledgeBaseEntry(
        keywords=("spalling", "delamination", "cover", "corrosion"),
        severity="High",
        length="30-60cm",
        width="Variable",
        depth="Concrete cover loss",
        description=(
            "Concrete spalling observed, typically driven by reinforcement "
            "corrosion or impact."
        ),
        short_term=(
            "Barricade loose material to prevent falling debris",
            "Remove delaminated cover carefully",
        ),
        long_term=(
            "Treat and passivate corroded reinforcement",
            "Recast cover using low-permeability repair mortar",
        ),
        urgency_level="High",
        urgency_timeline="Repair within 2 weeks",
    ),
)


def match_entry(label: str, knowledge_base: Sequence[KnowledgeBaseEntry]) -> Optional[KnowledgeBaseEntry]:
    if not label:
        return None
    for entry in knowledge_base:
        if entry.matches(label):
            return entry
    return None


def _require_text(raw: Dict[str, Any], key: str, idx: int) -> str:
    value = str(raw.get(key, "") or "").strip()
    if not value:
        raise ValueError(f"knowledge base entry {idx}: '{key}' is required")
    return value


def _require_steps(raw: Dict[str, Any], key: str, idx: int) -> Tuple[str, ...]:
    value = raw.get(key)
    if not isinstance(value, list):
        raise ValueError(f"knowledge base entry {idx}: '{key}' must be a list")
    steps = tuple(str(x).strip() for x in value if str(x).strip())
    if not steps:
        raise ValueError(f"knowledge base entry {idx}: '{key}' must not be empty")
    return steps


def entry_from_dict(raw: Any, idx: int = 0) -> KnowledgeBaseEntry:
    if not isinstance(raw, dict):
        raise ValueError(f"knowledge base entry {idx} must be a JSON object")

    keywords_raw = raw.get("keywords")
    if not isinstance(keywords_raw, list):
        raise ValueError(f"knowledge base entry {idx}: 'keywords' must be a list")
    keywords = tuple(str(k).strip().lower() for k in keywords_raw if str(k).strip())
    if not keywords:
        raise ValueError(f"knowledge base entry {idx}: 'keywords' must not be empty")

    severity = _require_text(raw, "severity", idx)
    if severity not in SEVERITY_LEVELS:
        raise ValueError(
            f"knowledge base entry {idx}: severity must be one of {', '.join(SEVERITY_LEVELS)}"
        )

    dims = raw.get("dimensions")
    urgency = raw.get("urgency")
    if not isinstance(dims, dict):
        raise ValueError(f"knowledge base entry {idx}: 'dimensions' must be an object")
    if not isinstance(urgency, dict):
        raise ValueError(f"knowledge base entry {idx}: 'urgency' must be an object")

    return KnowledgeBaseEntry(
        keywords=keywords,
        severity=severity,
        length=_require_text(dims, "length", idx),
        width=_require_text(dims, "width", idx),
        depth=_require_text(dims, "depth", idx),
        description=_require_text(raw, "description", idx),
        short_term=_require_steps(raw, "shortTerm", idx),
        long_term=_require_steps(raw, "longTerm", idx),
        urgency_level=_require_text(urgency, "level", idx),
        urgency_timeline=_require_text(urgency, "timeline", idx),
    )


def load_knowledge_base(path: Path) -> KnowledgeBase:
    """Load an ordered knowledge base from a JSON list of entries."""

    if not path.exists():
        raise FileNotFoundError(f"Missing file: {path}")
    with path.open("r", encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, list) or not raw:
        raise ValueError("knowledge base file must contain a non-empty JSON list")
    return tuple(entry_from_dict(item, idx) for idx, item in enumerate(raw))
