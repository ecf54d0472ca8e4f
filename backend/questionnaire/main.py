import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from questionnaire.config import Settings, get_settings
from questionnaire.errors import AppError
from questionnaire.logging import set_request_id, setup_logging
from questionnaire.routers.files import router as files_router
from questionnaire.routers.surveys import router as surveys_router
from questionnaire.services.emotion import EmotionClassifier, create_classifier
from questionnaire.services.storage import StorageBackend, create_storage
from questionnaire.services.surveys import SurveyService

logger = logging.getLogger(__name__)


def _error_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid request body"
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _error_message(exc)})


def create_app(settings: Optional[Settings] = None,
               storage: Optional[StorageBackend] = None,
               classifier: Optional[EmotionClassifier] = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="Questionnaire")

    app.state.settings = settings
    app.state.storage = storage or create_storage(settings)
    app.state.classifier = classifier if classifier is not None else create_classifier(settings)
    app.state.surveys = SurveyService(app.state.storage)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True, allow_methods=["*"], allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        set_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            set_request_id(None)
        response.headers["x-request-id"] = request_id
        return response

    install_error_handlers(app)

    @app.get("/health")
    def health():
        return {"ok": True}

    app.include_router(surveys_router)
    app.include_router(files_router)

    # Questionnaire front-end assets, when present
    if Path(settings.static_dir).is_dir():
        app.mount("/", StaticFiles(directory=settings.static_dir, html=True), name="static")

    return app


def build_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)
    return create_app(settings)
