import base64
import binascii
import logging
import re
import time

import httpx

from shared.schemas import WorkflowRunRequest
from workflow_gateway.errors import InvalidInputError, UpstreamError
from workflow_gateway.logging_config import log_api_call
from workflow_gateway.settings import Settings

UPLOAD_PATH = "/files/upload"
WORKFLOW_RUN_PATH = "/workflows/run"

_DATA_URI_RE = re.compile(r"^data:(.+);base64,(.+)$", re.DOTALL)

logger = logging.getLogger(__name__)


def _auth_headers(settings: Settings) -> dict[str, str]:
    return {"Authorization": f"Bearer {settings.api_key}"}


def parse_data_uri(data_uri: str) -> tuple[str, bytes]:
    match = _DATA_URI_RE.match(data_uri)
    if not match:
        raise InvalidInputError("invalid base64 data URI")
    content_type, payload = match.group(1), match.group(2)
    if content_type == "image/jpg":
        content_type = "image/jpeg"
    try:
        raw = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInputError(f"invalid base64 payload: {exc}") from exc
    return content_type, raw


def _upload_request(
    client: httpx.AsyncClient,
    url: str,
    headers: dict[str, str],
    filename: str,
    content_type: str,
    raw: bytes,
    user: str,
) -> httpx.Request:
    try:
        return client.build_request(
            "POST",
            url,
            headers=headers,
            data={"user": user},
            files={"file": (filename, raw, content_type)},
        )
    except (TypeError, ValueError) as exc:
        logger.warning("binary multipart build failed, sending base64 text: %s", exc)
        encoded = base64.b64encode(raw).decode("ascii")
        return client.build_request(
            "POST",
            url,
            headers=headers,
            data={"user": user},
            files={"file": (filename, encoded, content_type)},
        )


async def upload_file(
    client: httpx.AsyncClient,
    settings: Settings,
    data_uri: str,
    user: str,
) -> str:
    content_type, raw = parse_data_uri(data_uri)
    extension = content_type.split("/", 1)[-1]
    filename = f"file.{extension}"
    url = f"{settings.dify_api_url}{UPLOAD_PATH}"

    logger.info(
        "uploading file url=%s filename=%s content_type=%s bytes=%s",
        url,
        filename,
        content_type,
        len(raw),
    )
    request = _upload_request(
        client, url, _auth_headers(settings), filename, content_type, raw, user
    )
    started_at = time.monotonic()
    try:
        resp = await client.send(request)
    except httpx.TimeoutException:
        raise UpstreamError(502, '{"error": "upload timeout"}', message="upload timeout")
    except httpx.RequestError as exc:
        raise UpstreamError(
            502, '{"error": "upload connection error"}', message=f"upload connection error: {exc}"
        )
    log_api_call(UPLOAD_PATH, started_at)

    if not resp.is_success:
        logger.error("file upload failed status=%s body=%s", resp.status_code, resp.text)
        raise UpstreamError(resp.status_code, resp.text)

    try:
        file_id = resp.json()["id"]
    except (ValueError, KeyError, TypeError):
        raise UpstreamError(502, resp.text, message="upload response without file id")
    logger.info("file uploaded file_id=%s", file_id)
    return str(file_id)


async def run_workflow(
    client: httpx.AsyncClient,
    settings: Settings,
    payload: WorkflowRunRequest,
) -> httpx.Response:
    """Start a workflow run and return the unread response.

    The caller owns the returned response and must close it.
    """
    url = f"{settings.dify_api_url}{WORKFLOW_RUN_PATH}"
    body = payload.model_dump(exclude_none=True)
    headers = _auth_headers(settings)

    logger.info(
        "running workflow url=%s response_mode=%s user=%s input_keys=%s",
        url,
        payload.response_mode,
        payload.user,
        sorted(payload.inputs),
    )
    request = client.build_request("POST", url, json=body, headers=headers)
    try:
        resp = await client.send(request, stream=True)
    except httpx.TimeoutException:
        raise UpstreamError(502, '{"error": "upstream timeout"}', message="upstream timeout")
    except httpx.RequestError as exc:
        raise UpstreamError(
            502, '{"error": "upstream connection error"}', message=f"upstream connection error: {exc}"
        )
    log_api_call(WORKFLOW_RUN_PATH)

    logger.info(
        "workflow response status=%s content_type=%s",
        resp.status_code,
        resp.headers.get("content-type"),
    )
    if not resp.is_success:
        try:
            raw = await resp.aread()
        finally:
            await resp.aclose()
        text = raw.decode("utf-8", "replace")
        logger.error("workflow run failed status=%s body=%s", resp.status_code, text)
        raise UpstreamError(resp.status_code, text)
    return resp
