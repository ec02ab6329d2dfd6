"""Quick local client to test the Analyze API response.

Edit the CONFIG section below (or pass an image path as the first argument),
then run from repo root:
  python -m crackscan.services.analyze_api_client path/to/crack.jpg

The image is sent the same way the mobile app sends it: a downscaled JPEG
data URL in the `imageBase64` JSON field.

Server entrypoint (in another terminal):
  python -m uvicorn crackscan.services.analyze_service:app --host 0.0.0.0 --port 5000
"""

from __future__ import annotations

import base64
import io
import json
import sys
import time
from pathlib import Path
from typing import Optional

import httpx
from PIL import Image


# =========================
# CONFIG (EDIT ME)
# =========================
BASE_URL = "http://127.0.0.1:5000"
IMAGE_PATH = "crack.jpg"
MAX_SIDE = 1024

# The hosted model can be slow on a cold start.
TIMEOUT_S = 60.0


def image_to_data_url(img: Image.Image, max_side: int = MAX_SIDE) -> str:
    """Downscale + encode as a JPEG data URL."""

    img_rgb = img.convert("RGB")
    w, h = img_rgb.size
    scale = min(1.0, float(max_side) / float(max(w, h)))
    if scale < 1.0:
        new_w = max(1, int(round(w * scale)))
        new_h = max(1, int(round(h * scale)))
        img_rgb = img_rgb.resize((new_w, new_h), resample=Image.BICUBIC)

    buf = io.BytesIO()
    img_rgb.save(buf, format="JPEG", quality=85, optimize=True)
    b64 = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:image/jpeg;base64,{b64}"


def main(argv: Optional[list[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    image_path = Path(args[0] if args else IMAGE_PATH)
    if not image_path.exists():
        print(f"[error] Image not found: {image_path}", file=sys.stderr)
        return 2

    try:
        with Image.open(image_path) as img:
            payload = {"imageBase64": image_to_data_url(img)}
    except Exception as exc:  # noqa: BLE001 - local debug script
        print(f"[error] Invalid image: {exc}", file=sys.stderr)
        return 2

    url = f"{BASE_URL.rstrip('/')}/analyze"
    t0 = time.perf_counter()
    try:
        resp = httpx.post(url, json=payload, timeout=TIMEOUT_S)
    except Exception as exc:  # noqa: BLE001 - local debug script
        print(f"[error] Request failed: {exc}", file=sys.stderr)
        return 3

    dt_ms = int(round((time.perf_counter() - t0) * 1000.0))
    print(f"HTTP {resp.status_code} ({dt_ms} ms) -> {url}")

    content_type = resp.headers.get("content-type", "")
    if "application/json" not in content_type:
        print(resp.text)
        return 0

    body = resp.json()
    print(json.dumps(body, indent=2, ensure_ascii=False))
    if "error" in body:
        return 1

    # Quick extraction for the headline fields on the results screen.
    print("\n[summary]")
    for k in ("crackType", "severity", "confidence"):
        print(f"- {k}: {body.get(k)}")
    urgency = body.get("urgency") or {}
    print(f"- urgency: {urgency.get('level')} ({urgency.get('timeline')})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
