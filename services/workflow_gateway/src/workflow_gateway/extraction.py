import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from shared.schemas import FileInput
from workflow_gateway.file_types import file_type_for_url

logger = logging.getLogger(__name__)

Uploader = Callable[[str], Awaitable[str]]


@dataclass(frozen=True)
class ExtractedMessages:
    system_prompt: str
    user_query: str
    file_inputs: list[FileInput] = field(default_factory=list)


def _image_urls(messages: Sequence[dict[str, Any]]) -> list[str]:
    urls = []
    for message in messages:
        content = message.get("content")
        if not isinstance(content, list):
            continue
        for part in content:
            if not isinstance(part, dict) or part.get("type") != "image_url":
                continue
            image_url = part.get("image_url")
            url = image_url.get("url") if isinstance(image_url, dict) else None
            if isinstance(url, str) and url:
                urls.append(url)
    return urls


def _message_text(content: Any, index: int) -> str:
    if isinstance(content, list):
        text = ""
        for part in content:
            if isinstance(part, str):
                text += part + "\n"
            elif isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str):
                text += part["text"] + "\n"
        return text
    if isinstance(content, str):
        return content + "\n"
    if content is None:
        return ""
    logger.debug("coercing message content to text index=%s type=%s", index, type(content).__name__)
    return str(content) + "\n"


async def collect_file_inputs(
    messages: Sequence[dict[str, Any]],
    uploader: Uploader,
    concurrency: int = 1,
) -> list[FileInput]:
    """Turn every image part into a file input, keeping message order.

    Data URIs go through ``uploader``; plain URLs are passed by reference.
    Uploads run as one ordered batch with at most ``concurrency`` in flight;
    the first failed upload stops the rest and its error propagates.
    """
    urls = _image_urls(messages)
    if not urls:
        return []
    semaphore = asyncio.Semaphore(max(concurrency, 1))

    results: list[FileInput | None] = [None] * len(urls)
    aborted = asyncio.Event()

    async def _resolve(index: int, url: str) -> None:
        file_type = file_type_for_url(url)
        if not url.startswith("data:"):
            logger.info("remote file url=%s type=%s", url[:30] + "...", file_type)
            results[index] = FileInput(transfer_method="remote_url", url=url, type=file_type)
            return
        async with semaphore:
            # Tasks already scheduled when a sibling failed must not start an upload.
            if aborted.is_set():
                return
            logger.info("uploading inline file type=%s", file_type)
            try:
                file_id = await uploader(url)
            except Exception:
                aborted.set()
                raise
        results[index] = FileInput(
            transfer_method="local_file", upload_file_id=file_id, type=file_type
        )

    # The first failure cancels the uploads still in flight.
    try:
        async with asyncio.TaskGroup() as group:
            for index, url in enumerate(urls):
                group.create_task(_resolve(index, url))
    except ExceptionGroup as exc_group:
        raise exc_group.exceptions[0]
    return [file_input for file_input in results if file_input is not None]


async def extract_messages(
    messages: Sequence[dict[str, Any]],
    uploader: Uploader,
    concurrency: int = 1,
) -> ExtractedMessages:
    file_inputs = await collect_file_inputs(messages, uploader, concurrency)

    system_prompt = ""
    user_query = ""
    for index, message in enumerate(messages):
        role = message.get("role")
        if role == "system":
            system_prompt += _message_text(message.get("content"), index)
        elif role == "user":
            user_query += _message_text(message.get("content"), index)

    extracted = ExtractedMessages(
        system_prompt=system_prompt.strip(),
        user_query=user_query.strip(),
        file_inputs=file_inputs,
    )
    logger.info(
        "extracted messages count=%s system_chars=%s query_chars=%s files=%s",
        len(messages),
        len(extracted.system_prompt),
        len(extracted.user_query),
        len(extracted.file_inputs),
    )
    return extracted
