class GatewayError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInputError(GatewayError):
    """Malformed client input, e.g. an image data URI that cannot be decoded."""


class UpstreamError(GatewayError):
    """The workflow backend answered with a non-success status or could not be reached.

    ``body`` is the raw upstream body so the HTTP layer can forward it unchanged.
    """

    def __init__(self, status_code: int, body: str, message: str | None = None) -> None:
        super().__init__(message or f"upstream status {status_code}")
        self.status_code = status_code
        self.body = body


class ParseError(GatewayError):
    def __init__(self, line: str, reason: str) -> None:
        super().__init__(f"unparseable frame: {reason}")
        self.line = line


class BackendSignaledError(GatewayError):
    """The backend emitted an ``error`` event while running the workflow."""

    def __init__(self, code: str | None, message: str) -> None:
        super().__init__(message)
        self.code = code
