from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Literal["system", "user", "assistant"]
    # Kept loose on purpose: malformed content is coerced during extraction, not rejected here.
    content: Any = None


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    messages: list[ChatMessage] = Field(..., min_length=1)
    model: str
    stream: bool = False
    user: str | None = None


class FileInput(BaseModel):
    transfer_method: Literal["local_file", "remote_url"]
    upload_file_id: str | None = None
    url: str | None = None
    type: str

    @model_validator(mode="after")
    def _one_source(self) -> "FileInput":
        if self.transfer_method == "local_file":
            if not self.upload_file_id or self.url is not None:
                raise ValueError("local_file input needs upload_file_id and no url")
        elif not self.url or self.upload_file_id is not None:
            raise ValueError("remote_url input needs url and no upload_file_id")
        return self


class WorkflowRunRequest(BaseModel):
    inputs: dict[str, str | list[FileInput]]
    response_mode: Literal["streaming", "blocking"]
    user: str
    files: list[Any] = Field(default_factory=list)


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: Any = ""


class ChatCompletionChoice(BaseModel):
    index: int = 0
    message: AssistantMessage
    logprobs: None = None
    finish_reason: str = "stop"


class Usage(BaseModel):
    total_tokens: int


class ChatCompletion(BaseModel):
    id: str
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: str
    choices: list[ChatCompletionChoice]
    usage: Usage
    system_fingerprint: str | None = None


class ChunkDelta(BaseModel):
    content: Any = None


class ChatCompletionChunkChoice(BaseModel):
    index: int = 0
    delta: ChunkDelta
    finish_reason: str | None = None


class ChatCompletionChunk(BaseModel):
    id: str
    object: Literal["chat.completion.chunk"] = "chat.completion.chunk"
    created: int
    model: str
    choices: list[ChatCompletionChunkChoice]


class ModelCard(BaseModel):
    id: str
    object: Literal["model"] = "model"
    created: int
    owned_by: str = "dify"


class ModelList(BaseModel):
    object: Literal["list"] = "list"
    data: list[ModelCard]
