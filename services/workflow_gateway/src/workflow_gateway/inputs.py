import logging

from shared.schemas import FileInput, WorkflowRunRequest
from workflow_gateway.extraction import ExtractedMessages
from workflow_gateway.settings import Settings

FILE_INPUT_VARIABLE = "file_input"
DEFAULT_USER = "apiuser"

logger = logging.getLogger(__name__)


def resolve_user(settings: Settings, request_user: str | None) -> str:
    return settings.user or request_user or DEFAULT_USER


def build_inputs(
    extracted: ExtractedMessages, settings: Settings
) -> dict[str, str | list[FileInput]]:
    inputs: dict[str, str | list[FileInput]] = {}
    if extracted.file_inputs:
        inputs[FILE_INPUT_VARIABLE] = list(extracted.file_inputs)

    input_variable = settings.resolved_input_variable
    system_prompt = extracted.system_prompt
    user_query = extracted.user_query

    if settings.system_input_variable and system_prompt:
        inputs[settings.system_input_variable] = system_prompt
        inputs[input_variable] = user_query
    elif system_prompt:
        inputs[input_variable] = system_prompt + "\n\n" + user_query
    else:
        inputs[input_variable] = user_query

    logger.debug("mapped inputs keys=%s input_variable=%s", sorted(inputs), input_variable)
    return inputs


def build_run_request(
    inputs: dict[str, str | list[FileInput]], stream: bool, user: str
) -> WorkflowRunRequest:
    # Files travel in inputs[file_input]; the top-level list stays empty.
    return WorkflowRunRequest(
        inputs=inputs,
        response_mode="streaming" if stream else "blocking",
        user=user,
        files=[],
    )
