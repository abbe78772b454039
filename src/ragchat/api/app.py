"""FastAPI application exposing the ragchat request pipeline."""

from __future__ import annotations

from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from ragchat.api.schemas import ChatResponse, EmbedRequestModel, EmbedResponse, ErrorResponse, request_adapter
from ragchat.auth import bearer_token
from ragchat.config import Settings, get_settings
from ragchat.dependencies import AppDependencies, build_dependencies
from ragchat.errors import InvalidInput, RagChatError, RateLimited
from ragchat.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from ragchat.services.chat import ChatService

__all__ = ["AppDependencies", "app", "create_app"]

def _error_response(exc: RagChatError, correlation_id: str | None) -> JSONResponse:
    body = ErrorResponse(error=exc.user_message, correlation_id=correlation_id)
    headers: dict[str, str] = {}
    if isinstance(exc, RateLimited):
        body.retry_after = round(exc.retry_after, 3)
        headers["Retry-After"] = str(max(1, int(exc.retry_after + 0.999)))
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")
    app = FastAPI(title="ragchat API", version="0.1.0")
    app.state.dependencies = deps

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allow_origins),
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=list(settings.cors_allow_methods),
            allow_headers=list(settings.cors_allow_headers),
        )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    @app.exception_handler(RagChatError)
    async def handle_pipeline_error(request: Request, exc: RagChatError) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", None)
        return _error_response(exc, correlation_id)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("unhandled.error", correlation_id=correlation_id, error_type=exc.__class__.__name__)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Something went wrong. Please try again later.", "correlation_id": correlation_id},
        )

    async def chat_handler(request: Request) -> Response:
        try:
            raw = await request.json()
        except ValueError as exc:
            raise InvalidInput("request body is not valid JSON") from exc
        try:
            payload = request_adapter.validate_python(raw)
        except ValidationError as exc:
            logger.info("request.invalid", errors=exc.error_count())
            raise InvalidInput("request body failed validation") from exc

        credential = bearer_token(request.headers.get("Authorization"))
        service: ChatService = request.app.state.dependencies.chat_service
        result = await run_in_threadpool(service.handle, credential, payload.to_query())
        if isinstance(payload, EmbedRequestModel):
            return JSONResponse(EmbedResponse.from_result(result).model_dump())
        return JSONResponse(ChatResponse.from_answer(result).model_dump())

    for path in ("/chat", "/chat-handler"):
        app.add_api_route(
            path,
            chat_handler,
            methods=["POST"],
            responses={
                400: {"model": ErrorResponse},
                401: {"model": ErrorResponse},
                429: {"model": ErrorResponse},
                502: {"model": ErrorResponse},
            },
        )

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        from ragchat import __version__

        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.head("/healthz")
    async def healthcheck_head() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    return app


app = create_app()
