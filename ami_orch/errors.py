from __future__ import annotations


class RetryableCallError(Exception):
    """Call failed but may be re-issued (transport or protocol failure)."""


class TerminalBuildError(Exception):
    """Failure that must not be retried (bad response content, resource error, bad input)."""


class TransportError(RetryableCallError):
    """Connection, TLS or socket failure before a response was received."""


class ProtocolError(RetryableCallError):
    """Response received but unusable: non-200 status, NUL byte, missing body separator."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message if not raw else f"{message}:\n{raw}")
        self.raw = raw


class RetryExhaustedError(TerminalBuildError):
    def __init__(self, description: str, attempts: int, last_error: BaseException | None):
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")
        self.description = description
        self.attempts = attempts
        self.last_error = last_error


class ExtractionError(TerminalBuildError):
    """Expected tag absent from an API response."""

    def __init__(self, tag: str, text: str, message: str | None = None):
        super().__init__(message or f"Could not find <{tag}> in response:\n{text}")
        self.tag = tag
        self.text = text


class MalformedTagError(ExtractionError):
    """An opening tag with no matching closing tag."""

    def __init__(self, tag: str, text: str):
        super().__init__(tag, text, f"Unterminated <{tag}> in response:\n{text}")


class ResourceStateError(TerminalBuildError):
    """A cloud resource reported an error state, or an action returned false."""


class LocalIOError(TerminalBuildError):
    pass


class CredentialsError(TerminalBuildError):
    pass


class BuildCancelledError(TerminalBuildError):
    pass


class StageFailedError(TerminalBuildError):
    """A pipeline stage failed; carries the stage name and the underlying cause."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"Failure {stage}: {cause}")
        self.stage = stage
        self.cause = cause
