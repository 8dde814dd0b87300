import asyncio

import pytest

from workflow_gateway.extraction import extract_messages

pytestmark = pytest.mark.asyncio

PNG_URI = "data:image/png;base64,iVBORw0KGgo="


class RecordingUploader:
    def __init__(self, delays: dict[str, float] | None = None) -> None:
        self.calls: list[str] = []
        self._delays = delays or {}

    async def __call__(self, data_uri: str) -> str:
        self.calls.append(data_uri)
        await asyncio.sleep(self._delays.get(data_uri, 0))
        return f"id-{data_uri[-6:]}"


async def test_single_user_turn():
    uploader = RecordingUploader()
    extracted = await extract_messages([{"role": "user", "content": "  hello there \n"}], uploader)

    assert extracted.user_query == "hello there"
    assert extracted.system_prompt == ""
    assert extracted.file_inputs == []
    assert uploader.calls == []


async def test_all_messages_are_scanned():
    messages = [
        {"role": "system", "content": "be brief"},
        {"role": "system", "content": [{"type": "text", "text": "answer in French"}]},
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "ignored"},
        {"role": "user", "content": [{"type": "text", "text": "second"}, "third"]},
    ]
    extracted = await extract_messages(messages, RecordingUploader())

    assert extracted.system_prompt == "be brief\nanswer in French"
    assert extracted.user_query == "first\nsecond\nthird"


async def test_unknown_parts_skipped_and_odd_content_coerced():
    messages = [
        {"role": "user", "content": [{"type": "input_audio", "input_audio": {}}, {"type": "text", "text": "hi"}]},
        {"role": "user", "content": 42},
        {"role": "user", "content": None},
    ]
    extracted = await extract_messages(messages, RecordingUploader())

    assert extracted.user_query == "hi\n42"


async def test_data_uri_uploaded_and_remote_url_passed_through():
    uploader = RecordingUploader()
    messages = [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": "what is this"},
                {"type": "image_url", "image_url": {"url": PNG_URI}},
                {"type": "image_url", "image_url": {"url": "https://cdn.example.com/a/report.pdf?sig=1"}},
            ],
        }
    ]
    extracted = await extract_messages(messages, uploader)

    assert uploader.calls == [PNG_URI]
    local, remote = extracted.file_inputs
    assert local.transfer_method == "local_file"
    assert local.upload_file_id == "id-0KGgo="
    assert local.url is None
    assert local.type == "image"
    assert remote.transfer_method == "remote_url"
    assert remote.url == "https://cdn.example.com/a/report.pdf?sig=1"
    assert remote.upload_file_id is None
    assert remote.type == "document"
    assert extracted.user_query == "what is this"


async def test_each_data_uri_occurrence_uploads_once():
    uploader = RecordingUploader()
    part = {"type": "image_url", "image_url": {"url": PNG_URI}}
    messages = [
        {"role": "user", "content": [part]},
        {"role": "assistant", "content": [part]},
    ]
    extracted = await extract_messages(messages, uploader)

    assert uploader.calls == [PNG_URI, PNG_URI]
    assert [f.transfer_method for f in extracted.file_inputs] == ["local_file", "local_file"]


async def test_concurrent_uploads_keep_message_order():
    slow = "data:image/png;base64,AAAAslow"
    fast = "data:image/gif;base64,AAAAfast"
    uploader = RecordingUploader(delays={slow: 0.05, fast: 0})
    messages = [
        {"role": "user", "content": [{"type": "image_url", "image_url": {"url": slow}}]},
        {"role": "user", "content": [{"type": "image_url", "image_url": {"url": fast}}]},
    ]
    extracted = await extract_messages(messages, uploader, concurrency=4)

    assert [f.upload_file_id for f in extracted.file_inputs] == ["id-AAslow", "id-AAfast"]


async def test_upload_failure_stops_remaining_uploads():
    calls = []

    async def failing_first(data_uri: str) -> str:
        calls.append(data_uri)
        if len(calls) == 1:
            raise RuntimeError("boom")
        await asyncio.sleep(0)
        return "id-late"

    messages = [
        {
            "role": "user",
            "content": [
                {"type": "image_url", "image_url": {"url": f"data:image/png;base64,AAA{n}"}}
                for n in range(3)
            ],
        }
    ]
    with pytest.raises(RuntimeError, match="boom"):
        await extract_messages(messages, failing_first)

    await asyncio.sleep(0.01)
    assert calls == ["data:image/png;base64,AAA0"]
