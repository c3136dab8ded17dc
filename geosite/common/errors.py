"""Domain errors and failure typing."""


class PipelineError(Exception):
    """Base class for engine failures."""

    error_code = "PIPELINE_ERROR"


class ConfigurationError(PipelineError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"

    def __init__(self, message: str, parameter: str | None = None) -> None:
        super().__init__(message)
        self.parameter = parameter


class MalformedRecordError(PipelineError):
    """Raised for an input record without usable point geometry."""

    error_code = "MALFORMED_RECORD"

    def __init__(self, index: int, reason: str, record_id: str | None = None) -> None:
        location = f"record {index}" if record_id is None else f"record {index} (id={record_id})"
        super().__init__(f"Malformed {location}: {reason}")
        self.index = index
        self.reason = reason
        self.record_id = record_id


class NotFoundError(PipelineError, KeyError):
    """Raised when a point id is not present in the store."""

    error_code = "NOT_FOUND"

    def __init__(self, point_id: str) -> None:
        super().__init__(f"Unknown point id: {point_id}")
        self.point_id = point_id

    def __str__(self) -> str:
        return str(self.args[0])


class InputError(PipelineError):
    """Raised when raw input cannot be read or has an unsupported shape."""

    error_code = "INPUT_ERROR"


class StageError(PipelineError):
    """Raised for stage failures; the stage leaves the store untouched."""

    error_code = "STAGE_ERROR"


class StageCancelled(StageError):
    """Raised when a caller cancels a long-running stage."""

    error_code = "STAGE_CANCELLED"


class ContractError(PipelineError):
    """Raised when strict output contracts are broken."""

    error_code = "CONTRACT_ERROR"
