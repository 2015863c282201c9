"""Error taxonomy shared by the streaming and notification paths."""

from __future__ import annotations

from litestar.response import Response


class RelayError(Exception):
    """Base class for errors that map onto an outward HTTP status."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code.replace("_", " "))

    @property
    def headers(self) -> dict[str, str]:
        return {}


class NotFound(RelayError):
    status_code = 404
    code = "not_found"


class JobNotFound(NotFound):
    code = "job_not_found"


class MalformedRange(RelayError):
    status_code = 400
    code = "malformed_range"


class RangeNotSatisfiable(RelayError):
    status_code = 416
    code = "range_not_satisfiable"

    def __init__(self, total_size: int, message: str | None = None) -> None:
        super().__init__(message)
        self.total_size = total_size

    @property
    def headers(self) -> dict[str, str]:
        return {"Content-Range": f"bytes */{self.total_size}"}


class InvalidScheduleTime(RelayError):
    status_code = 400
    code = "invalid_schedule_time"


class JobAlreadyFired(RelayError):
    status_code = 409
    code = "job_already_fired"


class UpstreamUnavailable(RelayError):
    """A collaborator (storage, registry, job store) could not be reached."""

    status_code = 503
    code = "upstream_unavailable"


class StreamingFailure(RelayError):
    """The upstream body failed after the response headers were sent."""

    status_code = 502
    code = "streaming_failure"


class DeliveryError(Exception):
    """Raised by a push gateway for a single recipient."""

    def __init__(self, token: str, message: str) -> None:
        super().__init__(message)
        self.token = token


class PermanentlyInvalidRecipient(DeliveryError):
    """The gateway reports the token will never resolve to a device again."""


class TransientDeliveryError(DeliveryError):
    """Any other delivery failure; may succeed on retry."""


def error_response(error: RelayError) -> Response:
    return Response(
        content={"error": error.code, "detail": str(error)},
        status_code=error.status_code,
        headers=error.headers,
    )
