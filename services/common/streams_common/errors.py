"""
Error taxonomy of the stream extraction service.

Components raise these at their boundaries; the request lifecycle is the
only place that turns them into an HTTP status and body.
"""


class StreamsError(Exception):
    status_code = 500


class ValidationError(StreamsError):
    """Client-caused problem with the request shape. Not retried."""
    status_code = 400


class MissingInputError(ValidationError):
    def __init__(self, message: str = "Missing mask parameter."):
        super().__init__(message)


class UnsupportedMediaTypeError(ValidationError):
    status_code = 406

    def __init__(self, message: str = "Body is not application/json."):
        super().__init__(message)


class MethodNotAllowedError(ValidationError):
    status_code = 405

    def __init__(self, method: str):
        super().__init__(f"Method {method} not allowed.")
        self.method = method


class BusyError(StreamsError):
    """Another pipeline holds the gate. The caller may retry later."""
    status_code = 503

    def __init__(self, message: str = "Busy, try again later."):
        super().__init__(message)


class AreaTooLargeError(StreamsError):
    status_code = 400

    def __init__(self, area: float | None, ceiling: float):
        super().__init__("Area is too big.")
        self.area = area
        self.ceiling = ceiling


class CommandFailedError(StreamsError):
    """An external command could not be spawned or exited non-zero."""

    def __init__(self, args, returncode: int | None, output: str = ""):
        self.args_list = list(args)
        self.returncode = returncode
        self.output = output
        if returncode is None:
            msg = f"cmd_spawn_failed cmd={self.args_list[0] if self.args_list else ''} err={output}"
        else:
            msg = f"cmd_failed rc={returncode} cmd={self.args_list[0] if self.args_list else ''} err={output}"
        super().__init__(msg)


class StageFailedError(StreamsError):
    def __init__(self, stage: str, message: str):
        super().__init__(f"Stage {stage} failed: {message}")
        self.stage = stage
        self.message = message


class ArtifactIOError(StreamsError):
    def __init__(self, path, reason: str):
        super().__init__(f"Artifact {path}: {reason}")
        self.path = path
        self.reason = reason


class PipelineCancelled(StreamsError):
    """The job was cancelled. Nothing is sent to the client."""
    status_code = 0


class ClientDisconnected(PipelineCancelled):
    pass
