from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from crackscan.services import analyze_service as svc


MODEL_URL = "https://router.huggingface.co/hf-inference/v1/models/rievil/crackenpy"


def _install_fake_client(monkeypatch, responses: list, calls: list, client_kwargs: list | None = None) -> None:
    class FakeAsyncClient:
        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url, headers=None, json=None):
            calls.append({"url": url, "headers": headers, "json": json})
            item = responses.pop(0)
            if isinstance(item, Exception):
                raise item
            return item

    def _factory(*args, **kwargs):
        if client_kwargs is not None:
            client_kwargs.append(kwargs)
        return FakeAsyncClient()

    monkeypatch.setattr(svc.httpx, "AsyncClient", _factory)


def _response(status_code: int, **kwargs) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request("POST", MODEL_URL), **kwargs)


def test_query_inference_model_posts_inputs(monkeypatch) -> None:
    monkeypatch.setenv("HF_API_TOKEN", "hf_test")
    monkeypatch.delenv("HF_MODEL_ID", raising=False)
    monkeypatch.delenv("HF_INFERENCE_URL", raising=False)
    monkeypatch.setenv("HF_TIMEOUT_S", "7.5")
    calls: list = []
    client_kwargs: list = []
    _install_fake_client(
        monkeypatch,
        [_response(200, json=[{"label": "hairline", "score": 0.4}])],
        calls,
        client_kwargs,
    )

    raw = asyncio.run(svc._query_inference_model("data:image/jpeg;base64,AAAA"))

    assert raw == [{"label": "hairline", "score": 0.4}]
    assert calls[0]["url"] == MODEL_URL
    assert calls[0]["headers"]["Authorization"] == "Bearer hf_test"
    assert calls[0]["json"] == {"inputs": "data:image/jpeg;base64,AAAA"}
    assert client_kwargs[0]["timeout"] == httpx.Timeout(7.5)


def test_query_inference_model_raises_on_http_error(monkeypatch) -> None:
    monkeypatch.setenv("HF_TOKEN", "hf_alias")
    monkeypatch.delenv("HF_API_TOKEN", raising=False)
    calls: list = []
    _install_fake_client(monkeypatch, [_response(503, json={"error": "Model is loading"})], calls)

    with pytest.raises(httpx.HTTPStatusError) as excinfo:
        asyncio.run(svc._query_inference_model("abc"))

    assert len(calls) == 1  # no retry
    assert calls[0]["headers"]["Authorization"] == "Bearer hf_alias"
    assert svc._upstream_error_message(excinfo.value) == (
        "Inference model returned HTTP 503: Model is loading"
    )


def test_query_inference_model_non_json_reply(monkeypatch) -> None:
    monkeypatch.setenv("HF_API_TOKEN", "hf_test")
    _install_fake_client(monkeypatch, [_response(200, text="<html>oops</html>")], [])

    with pytest.raises(json.JSONDecodeError) as excinfo:
        asyncio.run(svc._query_inference_model("abc"))

    assert svc._upstream_error_message(excinfo.value) == "Inference model returned a non-JSON reply"


def test_query_inference_model_timeout_is_not_retried(monkeypatch) -> None:
    monkeypatch.setenv("HF_API_TOKEN", "hf_test")
    calls: list = []
    _install_fake_client(monkeypatch, [httpx.ReadTimeout("slow"), _response(200, json=[])], calls)

    with pytest.raises(httpx.TimeoutException) as excinfo:
        asyncio.run(svc._query_inference_model("abc"))

    assert len(calls) == 1
    assert svc._upstream_error_message(excinfo.value) == "Inference model request timed out"


def test_get_hf_token_missing(monkeypatch) -> None:
    monkeypatch.delenv("HF_API_TOKEN", raising=False)
    monkeypatch.delenv("HF_TOKEN", raising=False)

    with pytest.raises(RuntimeError, match="Missing HF_API_TOKEN"):
        svc._get_hf_token()


def test_get_model_url_from_env(monkeypatch) -> None:
    monkeypatch.setenv("HF_INFERENCE_URL", "http://localhost:8080/models/")
    monkeypatch.setenv("HF_MODEL_ID", "/acme/cracks/")

    assert svc._get_model_url() == "http://localhost:8080/models/acme/cracks"


@pytest.mark.parametrize("value, expected", [("12", 12.0), ("bad", 30.0), ("-1", 30.0)])
def test_get_timeout_s(monkeypatch, value, expected) -> None:
    monkeypatch.setenv("HF_TIMEOUT_S", value)
    assert svc._get_timeout_s() == expected


def test_get_max_body_bytes_fallback(monkeypatch) -> None:
    monkeypatch.setenv("MAX_BODY_BYTES", "lots")
    assert svc._get_max_body_bytes() == svc.DEFAULT_MAX_BODY_BYTES


def test_get_cors_origins(monkeypatch) -> None:
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "http://localhost:5173, https://app.example.com,")
    assert svc._get_cors_origins() == ["http://localhost:5173", "https://app.example.com"]

    monkeypatch.setenv("CORS_ALLOW_ORIGINS", " , ")
    assert svc._get_cors_origins() == ["*"]


def test_upstream_error_message_branches() -> None:
    req = httpx.Request("POST", MODEL_URL)

    html = httpx.Response(502, request=req, text="<html>gateway</html>")
    assert svc._upstream_error_message(
        httpx.HTTPStatusError("bad", request=req, response=html)
    ) == "Inference model returned HTTP 502: <html>gateway</html>"

    nested = httpx.Response(400, request=req, json={"error": {"message": "bad inputs"}})
    assert svc._upstream_error_message(
        httpx.HTTPStatusError("bad", request=req, response=nested)
    ) == "Inference model returned HTTP 400: bad inputs"

    empty = httpx.Response(500, request=req)
    assert svc._upstream_error_message(
        httpx.HTTPStatusError("bad", request=req, response=empty)
    ) == "Inference model returned HTTP 500: request failed"

    assert svc._upstream_error_message(TimeoutError()) == "Inference model request timed out"
    assert svc._upstream_error_message(ValueError("boom")) == "boom"
    assert svc._upstream_error_message(RuntimeError()) == "RuntimeError"
