"""Global error handlers producing the `{success, message}` envelope with a request id."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from dsync.api.request_id import get_request_id
from dsync.domain.chat.errors import SyncError

LOGGER = logging.getLogger(__name__)


def _failure(request: Request, status_code: int, message: str, code: str, **extra) -> JSONResponse:
	rid = get_request_id(request)
	payload = {"success": False, "message": message, "code": code, "request_id": rid, **extra}
	return JSONResponse(status_code=status_code, content=payload, headers={"X-Request-Id": rid})


def install_error_handlers(app: FastAPI) -> None:
	@app.exception_handler(SyncError)
	async def sync_error_handler(request: Request, exc: SyncError):  # type: ignore[override]
		return _failure(request, exc.status_code, exc.detail, exc.code)

	@app.exception_handler(StarletteHTTPException)
	async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
		detail = exc.detail if isinstance(exc.detail, str) else "http_error"
		return _failure(request, exc.status_code, detail, detail)

	@app.exception_handler(RequestValidationError)
	async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
		return _failure(request, 422, "validation_error", "invalid_argument", errors=jsonable_errors(exc))

	@app.exception_handler(Exception)
	async def unhandled_exc_handler(request: Request, exc: Exception):  # type: ignore[override]
		LOGGER.error("unhandled error", exc_info=exc)
		return _failure(request, 500, "internal", "internal")


def jsonable_errors(exc: RequestValidationError) -> list:
	return [
		{"loc": list(error.get("loc", ())), "msg": str(error.get("msg", "")), "type": str(error.get("type", ""))}
		for error in exc.errors()
	]
