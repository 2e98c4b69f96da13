from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from loguru import logger

from clarifier.errors import AuthenticationError, ClarifierError, InternalError, RateLimitError, ValidationError
from clarifier.orchestrator import SessionOrchestrator
from clarifier.rate_limiter import RateLimitResult, rate_limit_headers
from clarifier.schemas import parse_chat_request


def _error_response(exc: ClarifierError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitError):
        headers = rate_limit_headers(
            RateLimitResult(allowed=False, remaining=exc.remaining, limit=exc.limit, tier=exc.tier)
        )
    return JSONResponse(status_code=exc.http_status, content=exc.to_payload(), headers=headers)


def create_app(orchestrator: SessionOrchestrator) -> FastAPI:
    app = FastAPI(title="Clarifier")

    @app.exception_handler(ClarifierError)
    async def clarifier_error_handler(request: Request, exc: ClarifierError):
        if exc.http_status >= 500:
            logger.error(f"{request.method} {request.url.path} failed ({exc.code}): {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected ({exc.code}): {exc}")
        return _error_response(exc)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return _error_response(InternalError("Internal server error"))

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/api/chat")
    async def chat(request: Request, x_user_id: str | None = Header(default=None)):
        if not x_user_id or not x_user_id.strip():
            raise AuthenticationError("Missing X-User-Id header")
        try:
            payload = await request.json()
        except ValueError as ex:
            raise ValidationError("Request body must be valid JSON", "body") from ex

        chat_request = parse_chat_request(payload)
        response = await orchestrator.handle(x_user_id.strip(), chat_request)
        return response.to_dict()

    return app
