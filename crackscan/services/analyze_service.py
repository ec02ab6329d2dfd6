"""CrackScan Analyze Service.

This FastAPI app implements the endpoint the mobile app calls after a photo is
captured or uploaded.

- Accept JSON `{ "imageBase64": "..." }` on `POST /analyze` (also `/api/analyze`).
- Forward the image to the hosted crack model as `{ "inputs": imageBase64 }`.
- Normalize whatever the model returns into the results-screen contract
  (see `crackscan.shared.assessment_contract.CanonicalAssessment`).
- Errors are a flat envelope: `{ "error": "..." }` (400 / 413 / 500).

There is no retry: the model call is bounded only by `HF_TIMEOUT_S`.

Run (from repo root):
  uvicorn crackscan.services.analyze_service:app --host 0.0.0.0 --port 5000

Quick curl:
  curl -X POST http://127.0.0.1:5000/analyze -H "Content-Type: application/json" \
       -d '{"imageBase64": "data:image/jpeg;base64,..."}'
"""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from crackscan.shared.assessment_contract import ErrorEnvelope
from crackscan.shared.knowledge_base import (
    DEFAULT_KNOWLEDGE_BASE,
    KnowledgeBase,
    load_knowledge_base,
)
from crackscan.shared.normalize import normalize_with_report


SERVICE_VERSION = "0.1"

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL_ID = "rievil/crackenpy"
DEFAULT_INFERENCE_URL = "https://router.huggingface.co/hf-inference/v1/models"
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_MAX_BODY_BYTES = 20 * 1024 * 1024

# Assessments are per-photo; never cache them in proxies.
SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Cache-Control": "no-store, no-cache, must-revalidate",
}


def _error(message: str, status_code: int) -> JSONResponse:
    payload: ErrorEnvelope = {"error": message}
    return JSONResponse(status_code=status_code, content=payload)


def _get_hf_token() -> str:
    # Primary: HF_API_TOKEN. Also accept HF_TOKEN (huggingface_hub's name) for local debugging.
    token = os.getenv("HF_API_TOKEN") or os.getenv("HF_TOKEN")
    if not token:
        raise RuntimeError("Missing HF_API_TOKEN (or HF_TOKEN) for the inference model")
    return token


def _get_model_url() -> str:
    base = os.getenv("HF_INFERENCE_URL", DEFAULT_INFERENCE_URL).strip().rstrip("/")
    model_id = os.getenv("HF_MODEL_ID", DEFAULT_MODEL_ID).strip().strip("/")
    return f"{base}/{model_id or DEFAULT_MODEL_ID}"


def _get_timeout_s() -> float:
    try:
        timeout_s = float(os.getenv("HF_TIMEOUT_S", DEFAULT_TIMEOUT_S))
    except ValueError:
        return DEFAULT_TIMEOUT_S
    return timeout_s if timeout_s > 0 else DEFAULT_TIMEOUT_S


def _get_max_body_bytes() -> int:
    try:
        limit = int(os.getenv("MAX_BODY_BYTES", DEFAULT_MAX_BODY_BYTES))
    except ValueError:
        return DEFAULT_MAX_BODY_BYTES
    return limit if limit > 0 else DEFAULT_MAX_BODY_BYTES


def _get_cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "*")
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or ["*"]


@lru_cache(maxsize=1)
def _get_knowledge_base() -> KnowledgeBase:
    """Load the knowledge base once per process.

    `CRACK_KB_PATH` may point at a JSON file that replaces the built-in table.
    A broken file is a deployment error and is raised, not silently ignored.
    """

    kb_path = os.getenv("CRACK_KB_PATH")
    if not kb_path:
        return DEFAULT_KNOWLEDGE_BASE
    kb = load_knowledge_base(Path(kb_path))
    LOGGER.info("Loaded %d knowledge base entries from %s", len(kb), kb_path)
    return kb


async def _query_inference_model(image_b64: str) -> Any:
    """POST the image to the hosted model and return its decoded JSON reply."""

    token = _get_hf_token()
    url = _get_model_url()
    headers = {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
    }

    async with httpx.AsyncClient(timeout=httpx.Timeout(_get_timeout_s())) as client:
        resp = await client.post(url, headers=headers, json={"inputs": image_b64})
        resp.raise_for_status()
        return resp.json()


def _extract_upstream_error_json(resp: httpx.Response) -> dict[str, Any]:
    try:
        payload = resp.json()
    except Exception:  # noqa: BLE001 - best effort only
        return {}
    return payload if isinstance(payload, dict) else {}


def _upstream_error_message(exc: Exception) -> str:
    """Return a compact, non-secret message for the 500 envelope."""

    if isinstance(exc, (TimeoutError, httpx.TimeoutException)):
        return "Inference model request timed out"

    if isinstance(exc, httpx.HTTPStatusError):
        status = int(exc.response.status_code)
        payload = _extract_upstream_error_json(exc.response)
        err = payload.get("error")
        if isinstance(err, dict):
            err = err.get("message")
        err_msg = str(err or "").strip()
        if not err_msg:
            # Proxies sometimes answer with HTML; keep a short snippet.
            snippet = (exc.response.text or "").strip().replace("\n", " ")
            err_msg = snippet[:200] if snippet else "request failed"
        return f"Inference model returned HTTP {status}: {err_msg}"

    if isinstance(exc, httpx.RequestError):
        return f"Inference model unreachable: {exc.__class__.__name__}"
    if isinstance(exc, json.JSONDecodeError):
        return "Inference model returned a non-JSON reply"

    msg = str(exc).strip()
    return msg[:200] if msg else exc.__class__.__name__


app = FastAPI(title="CrackScan Analyze Service", version=SERVICE_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(),
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# Errors are always JSON in the `{ "error": ... }` envelope, never HTML.
@app.exception_handler(404)
async def not_found_handler(request: Request, __) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"error": "Not Found", "path": request.url.path},
    )


@app.exception_handler(405)
async def method_not_allowed_handler(request: Request, __) -> JSONResponse:
    return _error("Method Not Allowed", status_code=405)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.update(SECURITY_HEADERS)
    return response


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/analyze")
@app.post("/api/analyze")
async def analyze(request: Request) -> JSONResponse:
    # 1) Read + validate the request body (never reaches the model when invalid).
    body_bytes = await request.body()
    if len(body_bytes) > _get_max_body_bytes():
        return _error("Payload too large", status_code=413)
    try:
        body = json.loads(body_bytes or b"{}")
    except ValueError:
        return _error("Invalid JSON body", status_code=400)

    image_b64 = body.get("imageBase64") if isinstance(body, dict) else None
    if not isinstance(image_b64, str) or not image_b64.strip():
        return _error("Missing image", status_code=400)

    # 2) Call the hosted model, then normalize its reply. No retry on failure.
    try:
        raw = await _query_inference_model(image_b64)
        LOGGER.debug("model raw output: %s", json.dumps(raw, ensure_ascii=False)[:4000])
        assessment, report = normalize_with_report(raw, _get_knowledge_base())
    except Exception as exc:  # noqa: BLE001 - surfaced as 500 envelope
        message = _upstream_error_message(exc)
        LOGGER.warning("analyze failed: %s", message)
        return _error(message, status_code=500)

    LOGGER.info(
        "analyze ok shape=%s defaulted=%d crack_type=%s",
        report.shape,
        len(report.defaulted),
        assessment["crackType"],
    )
    return JSONResponse(status_code=200, content=assessment)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=5000)
