# questionnaire/proxy.py
"""
Public-facing pass-through proxy.

Serves the questionnaire front-end and forwards the file / submission routes
to the internal backend at BACKEND_URL. Every forwarding route answers 501
when no backend is configured and 502 when the backend cannot be reached.

    uvicorn questionnaire.proxy:build_app --factory
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import httpx
from fastapi import FastAPI, Query, Request
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, Response
from fastapi.staticfiles import StaticFiles

from questionnaire.config import Settings, get_settings
from questionnaire.errors import UpstreamError
from questionnaire.logging import setup_logging

logger = logging.getLogger(__name__)


class BackendNotConfigured(Exception):
    pass


async def _forward(request: Request, method: str, path: str, **kwargs) -> Response:
    backend_url = request.app.state.settings.backend_url
    if not backend_url:
        raise BackendNotConfigured()
    client: httpx.AsyncClient = request.app.state.upstream
    try:
        upstream = await client.request(method, f"{backend_url}{path}", **kwargs)
    except httpx.HTTPError as e:
        raise UpstreamError(str(e) or "Upstream error") from e
    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type=upstream.headers.get("content-type"),
    )


def create_proxy_app(settings: Optional[Settings] = None,
                     client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_client = app.state.upstream is None
        if owns_client:
            app.state.upstream = httpx.AsyncClient(
                timeout=settings.proxy_timeout_seconds, verify=settings.proxy_verify_tls
            )
        try:
            yield
        finally:
            if owns_client:
                await app.state.upstream.aclose()
                app.state.upstream = None

    app = FastAPI(title="Questionnaire proxy", lifespan=lifespan)
    app.state.settings = settings
    app.state.upstream = client
    static_dir = Path(settings.static_dir)
    logger.info("backend URL: %s", settings.backend_url or "(not set)")

    @app.exception_handler(BackendNotConfigured)
    async def not_configured_handler(request: Request, exc: BackendNotConfigured):
        return PlainTextResponse("BACKEND_URL not configured", status_code=501)

    @app.exception_handler(UpstreamError)
    async def upstream_handler(request: Request, exc: UpstreamError):
        logger.error("proxy error on %s %s: %s", request.method, request.url.path, exc)
        return PlainTextResponse(str(exc), status_code=exc.status_code)

    # ---------- Routes ----------

    @app.get("/")
    def landing():
        path = static_dir / ("index.html" if settings.backend_url else "501.html")
        if path.is_file():
            return FileResponse(path)
        if not settings.backend_url:
            return PlainTextResponse("BACKEND_URL not configured", status_code=501)
        return PlainTextResponse("Not found", status_code=404)

    @app.get("/health")
    def health():
        return JSONResponse({"ok": True, "backend": bool(settings.backend_url)})

    @app.get("/files")
    async def list_files(request: Request):
        return await _forward(request, "GET", "/files")

    @app.post("/uploadfile")
    async def upload_file(request: Request):
        # multipart body forwarded as-is; content-type carries the boundary
        headers = {}
        if ct := request.headers.get("content-type"):
            headers["content-type"] = ct
        return await _forward(request, "POST", "/files", content=await request.body(), headers=headers)

    @app.get("/results")
    async def results(request: Request):
        return await _forward(request, "GET", "/results")

    @app.delete("/file")
    async def delete_file(request: Request, filename: Optional[str] = Query(default=None)):
        if not settings.backend_url:
            raise BackendNotConfigured()
        if not filename:
            return PlainTextResponse("filename query param is required", status_code=400)
        return await _forward(request, "DELETE", "/file", params={"filename": filename})

    @app.post("/submit")
    async def submit(request: Request):
        return await _forward(
            request, "POST", "/submit",
            content=await request.body(), headers={"content-type": "application/json"},
        )

    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(static_dir)), name="static")

    return app


def build_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)
    return create_proxy_app(settings)
