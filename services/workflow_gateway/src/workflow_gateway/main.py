import json
import logging
import time
import uuid
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response, StreamingResponse

from shared.schemas import ChatCompletion, ChatRequest, ModelCard, ModelList
from workflow_gateway.dify_client import run_workflow, upload_file
from workflow_gateway.errors import (
    BackendSignaledError,
    GatewayError,
    InvalidInputError,
    UpstreamError,
)
from workflow_gateway.extraction import extract_messages
from workflow_gateway.inputs import build_inputs, build_run_request, resolve_user
from workflow_gateway.logging_config import configure_logging
from workflow_gateway.request_id import (
    REQUEST_ID_HEADER,
    elapsed_ms,
    mark_request_start,
    set_request_id,
)
from workflow_gateway.settings import Settings, get_settings
from workflow_gateway.translator import StreamTranslator, stream_chat_chunks, translate_blocking

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

_STARTED_AT = int(time.time())


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout_seconds)
    )
    try:
        yield
    finally:
        await app.state.http_client.aclose()


app = FastAPI(title="Workflow Gateway", lifespan=lifespan)


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    set_request_id(request_id)
    mark_request_start()
    if settings.app_env.lower() == "prod":
        if request.url.path in ("/docs", "/openapi.json"):
            return JSONResponse(status_code=404, content={"detail": "not found"})
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def _error_response(exc: GatewayError) -> Response:
    if isinstance(exc, UpstreamError):
        logger.warning("upstream error status=%s", exc.status_code)
        try:
            json.loads(exc.body)
        except ValueError:
            media_type = "text/plain"
        else:
            media_type = "application/json"
        return Response(content=exc.body, status_code=exc.status_code, media_type=media_type)
    if isinstance(exc, (InvalidInputError, BackendSignaledError)):
        logger.warning("request failed: %s", exc.message)
    else:
        logger.error("request failed: %s", exc.message)
    return JSONResponse(status_code=500, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return _error_response(InvalidInputError(f"invalid request: {problems}"))


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/v1/models")
def list_models(settings: Settings = Depends(get_settings)) -> ModelList:
    return ModelList(data=[ModelCard(id=settings.model_name, created=_STARTED_AT)])


@app.post("/v1/chat/completions", response_model=None)
@app.post("/chat/completions", response_model=None)
async def chat_completions(
    payload: ChatRequest,
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> ChatCompletion | Response:
    messages = [msg.model_dump() for msg in payload.messages]
    user = resolve_user(settings, payload.user)
    logger.info(
        "chat request model=%s stream=%s messages=%s user=%s",
        payload.model,
        payload.stream,
        len(messages),
        user,
    )

    async def _upload(data_uri: str) -> str:
        return await upload_file(client, settings, data_uri, user)

    try:
        extracted = await extract_messages(messages, _upload, settings.upload_concurrency)
        run_request = build_run_request(build_inputs(extracted, settings), payload.stream, user)
        resp = await run_workflow(client, settings, run_request)
    except GatewayError as exc:
        return _error_response(exc)
    except Exception as exc:
        logger.exception("unexpected error preparing workflow run")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    if payload.stream:
        translator = StreamTranslator(settings, payload.model)
        return StreamingResponse(
            stream_chat_chunks(resp, translator), media_type="text/event-stream"
        )

    try:
        completion = await translate_blocking(resp, settings, payload.model)
    except GatewayError as exc:
        return _error_response(exc)
    logger.info("chat completion done elapsed_ms=%s", elapsed_ms())
    return completion


def run() -> None:
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_config=None)
