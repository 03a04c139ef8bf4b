"""Typed failures raised by the chat core and mapped to HTTP by the API layer."""

from __future__ import annotations


class SyncError(RuntimeError):
	status_code = 500
	default_code = "internal"

	def __init__(self, code: str | None = None, *, status_code: int | None = None, message: str | None = None) -> None:
		code = code or self.default_code
		super().__init__(message or code)
		self.code = code
		self.status_code = status_code or type(self).status_code
		self.detail = message or code


class AccessDenied(SyncError):
	"""Actor is not a member of the chat or does not own the resource."""

	status_code = 403
	default_code = "access_denied"


class NotFound(SyncError):
	status_code = 404
	default_code = "not_found"


class InvalidArgument(SyncError):
	status_code = 400
	default_code = "invalid_argument"


class UploadFailed(SyncError):
	status_code = 502
	default_code = "upload_failed"


class Transient(SyncError):
	"""Network failure or timeout; the outcome of the action is unknown."""

	status_code = 503
	default_code = "transient"


class Internal(SyncError):
	status_code = 500
	default_code = "internal"


_BY_STATUS = {
	400: InvalidArgument,
	401: AccessDenied,
	403: AccessDenied,
	404: NotFound,
	413: InvalidArgument,
	422: InvalidArgument,
	502: UploadFailed,
	503: Transient,
	504: Transient,
}


def from_status(status_code: int, code: str | None = None, message: str | None = None) -> SyncError:
	"""Rebuild a typed failure from an HTTP status (client side)."""
	cls = _BY_STATUS.get(status_code, Internal)
	return cls(code, status_code=status_code, message=message)


__all__ = [
	"AccessDenied",
	"Internal",
	"InvalidArgument",
	"NotFound",
	"SyncError",
	"Transient",
	"UploadFailed",
	"from_status",
]
