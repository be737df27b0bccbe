"""FastAPI app for a LibreTranslate-compatible translation API.

The HTTP layer lives under `apps/` and can depend on heavier deps (FastAPI, uvicorn).
All model execution is delegated to the core engine (`ltengine/engine`).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from ltengine import __version__
from ltengine.engine.errors import (
    ContextAllocationError,
    DecodeError,
    InferenceError,
    ModelLoadError,
    TokenizationError,
)
from ltengine.engine.translate_engine import MAX_ALTERNATIVES, TranslateEngine
from ltengine.languages import AUTO, LANGUAGES, is_supported

logger = logging.getLogger(__name__)

DEFAULT_CHAR_LIMIT = 5000

_ERROR_STATUS: dict[type[InferenceError], int] = {
    TokenizationError: 400,
    ContextAllocationError: 413,
    DecodeError: 500,
    ModelLoadError: 503,
}

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def _status_for(exc: InferenceError) -> int:
    for cls, status in _ERROR_STATUS.items():
        if isinstance(exc, cls):
            return status
    return 500


def create_app(
    *,
    engine: TranslateEngine,
    model_id: str,
    char_limit: int = DEFAULT_CHAR_LIMIT,
    api_key: str = "",
    echo_on_failure: bool = True,
) -> FastAPI:
    app = FastAPI(title="LTEngine Translation Server", version=__version__)

    if int(char_limit) <= 0:
        raise ValueError("char_limit must be > 0")
    char_limit = int(char_limit)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)

    async def _wait_for_disconnect(request: Request, poll_s: float = 0.1) -> None:
        while True:
            if await request.is_disconnected():
                return
            await asyncio.sleep(poll_s)

    async def _run_with_disconnect_cancellation(request: Request, coro: Any) -> Any:
        task = asyncio.create_task(coro)
        disconnect_task = asyncio.create_task(_wait_for_disconnect(request))
        # Yield to let both tasks start (handles coroutines that return synchronously).
        await asyncio.sleep(0)
        done, pending = await asyncio.wait(
            {task, disconnect_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
        if disconnect_task in done:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            raise HTTPException(status_code=499, detail="Client disconnected")

        disconnect_task.cancel()
        try:
            await disconnect_task
        except asyncio.CancelledError:
            pass
        return task.result()

    async def _read_body(request: Request) -> dict[str, Any]:
        content_type = request.headers.get("content-type", "")
        if content_type.startswith("application/json"):
            try:
                payload = await request.json()
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=f"Invalid request: malformed JSON ({exc})") from exc
            if not isinstance(payload, dict):
                raise HTTPException(status_code=400, detail="Invalid request: body must be a JSON object")
            return payload
        if content_type.startswith(_FORM_CONTENT_TYPES):
            form = await request.form()
            # Uploaded files are not accepted as field values.
            return {key: value for key, value in form.items() if isinstance(value, str)}
        raise HTTPException(status_code=400, detail="Unsupported content-type")

    def _required_str(payload: dict[str, Any], key: str) -> str:
        value = payload.get(key)
        if not isinstance(value, str) or not value.strip():
            raise HTTPException(status_code=400, detail=f"Invalid request: missing {key} parameter")
        return value

    def _parse_alternatives(payload: dict[str, Any]) -> int:
        raw = payload.get("alternatives", 0)
        if raw in (None, ""):
            return 0
        try:
            n = int(raw)
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail="Invalid request: alternatives must be an integer") from exc
        if n < 0 or n > MAX_ALTERNATIVES:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid request: alternatives must be between 0 and {MAX_ALTERNATIVES}",
            )
        return n

    # -------------------------------------------------------------------------
    # Health & Metadata
    # -------------------------------------------------------------------------

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "model": model_id, "model_info": engine.model_info}

    @app.get("/languages")
    async def languages() -> list[dict[str, Any]]:
        return [language.to_dict() for language in LANGUAGES]

    @app.get("/frontend/settings")
    async def frontend_settings() -> dict[str, Any]:
        return {
            "apiKeys": bool(api_key),
            "charLimit": char_limit,
            "filesTranslation": False,
            "frontendTimeout": 1000,
            "keyRequired": bool(api_key),
            "language": {
                "source": {"code": AUTO, "name": "Auto Detect"},
                "target": {"code": "en", "name": "English"},
            },
            "suggestions": False,
            "supportedFilesFormat": [],
        }

    # -------------------------------------------------------------------------
    # Translation
    # -------------------------------------------------------------------------

    @app.post("/translate")
    async def translate(request: Request) -> Any:
        payload = await _read_body(request)

        q = _required_str(payload, "q")
        source = _required_str(payload, "source").strip()
        target = _required_str(payload, "target").strip()

        if api_key and payload.get("api_key") != api_key:
            raise HTTPException(status_code=403, detail="Invalid API key")

        if len(q) > char_limit:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid request: request ({len(q)}) exceeds text limit ({char_limit})",
            )
        if not is_supported(source, allow_auto=True):
            raise HTTPException(status_code=400, detail=f"{source} is not supported")
        if not is_supported(target):
            raise HTTPException(status_code=400, detail=f"{target} is not supported")

        alternatives = _parse_alternatives(payload)

        try:
            result = await _run_with_disconnect_cancellation(
                request,
                engine.atranslate(q, source, target, alternatives=alternatives),
            )
        except InferenceError as exc:
            if echo_on_failure:
                logger.warning("Translation failed, returning input text: %s", exc)
                return JSONResponse({"translatedText": q, "alternatives": []})
            raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc
        except HTTPException:
            raise
        except Exception as exc:
            logger.exception("Unexpected translation failure")
            if echo_on_failure:
                return JSONResponse({"translatedText": q, "alternatives": []})
            raise HTTPException(status_code=500, detail=str(exc)) from exc

        return JSONResponse({"translatedText": result.text, "alternatives": list(result.alternatives)})

    return app
