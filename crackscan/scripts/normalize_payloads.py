"""
Normalize saved raw model payloads into crack assessments.
Usage:
  python -m crackscan.scripts.normalize_payloads --input <payload.json | dir>
  python -m crackscan.scripts.normalize_payloads --input payloads/ --output-dir out/ --report

Useful for replaying captured model replies (the model's response shape is
undocumented) without calling the hosted model.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from tqdm import tqdm

from crackscan.shared.knowledge_base import DEFAULT_KNOWLEDGE_BASE, load_knowledge_base
from crackscan.shared.normalize import normalize_with_report


LOGGER = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Normalize saved raw model payloads")
    parser.add_argument("--input", type=str, required=True, help="JSON file or directory of *.json")
    parser.add_argument("--output-dir", type=str, default=None)
    parser.add_argument("--knowledge-base", type=str, default=None)
    parser.add_argument("--report", action="store_true", help="Include shape/matched/defaulted info")
    return parser.parse_args(argv)


def list_payloads(input_path: Path) -> List[Path]:
    if input_path.is_dir():
        return sorted(p for p in input_path.glob("*.json") if p.is_file())
    return [input_path]


def load_json(path: Path) -> Any:
    if not path.exists():
        raise FileNotFoundError(f"Missing file: {path}")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def normalize_file(path: Path, knowledge_base, include_report: bool) -> Dict[str, Any]:
    assessment, report = normalize_with_report(load_json(path), knowledge_base)
    record: Dict[str, Any] = {"source": path.name, "assessment": assessment}
    if include_report:
        record["report"] = {
            "shape": report.shape,
            "matched": list(report.matched),
            "defaulted": list(report.defaulted),
            "knowledge_base_match": (
                list(report.knowledge_base_match) if report.knowledge_base_match else None
            ),
        }
    return record


def run(args: argparse.Namespace) -> int:
    knowledge_base = DEFAULT_KNOWLEDGE_BASE
    if args.knowledge_base:
        knowledge_base = load_knowledge_base(Path(args.knowledge_base))

    payloads = list_payloads(Path(args.input))
    if not payloads:
        print(f"No *.json payloads found in {args.input}", file=sys.stderr)
        return 1

    output_dir = Path(args.output_dir) if args.output_dir else None
    if output_dir is not None:
        output_dir.mkdir(parents=True, exist_ok=True)

    failed = 0
    records: List[Dict[str, Any]] = []
    for path in tqdm(payloads, desc="normalize", disable=len(payloads) < 2):
        try:
            record = normalize_file(path, knowledge_base, args.report)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Skipping %s: %s", path, exc)
            failed += 1
            continue
        if output_dir is not None:
            out_path = output_dir / path.name
            with out_path.open("w", encoding="utf-8") as f:
                json.dump(record, f, indent=2, ensure_ascii=False)
        else:
            records.append(record)

    for record in records:
        print(json.dumps(record, indent=2, ensure_ascii=False))
    if output_dir is not None:
        print(f"Saved: {len(payloads) - failed} file(s) to {output_dir}")
    return 1 if failed else 0


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    sys.exit(run(parse_args()))


if __name__ == "__main__":
    main()
