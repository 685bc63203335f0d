import math

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class UnknownRecord(LookupError):
    def __init__(self, file_id: str) -> None:
        super().__init__(f"File {file_id} not found")
        self.file_id = file_id


class UnknownSession(LookupError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


def _finite(value):
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    if isinstance(value, dict):
        return {k: _finite(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_finite(v) for v in value]
    return value


def _renderable(error: dict) -> dict:
    if "input" not in error:
        return error
    return {**error, "input": _finite(error["input"])}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(UnknownRecord)
    async def unknown_record_handler(request: Request, exc: UnknownRecord):
        return JSONResponse({"detail": str(exc), "file_id": exc.file_id}, status_code=404)

    @app.exception_handler(UnknownSession)
    async def unknown_session_handler(request: Request, exc: UnknownSession):
        return JSONResponse({"detail": str(exc), "session_id": exc.session_id}, status_code=404)

    # JSONResponse refuses inf/NaN, which pydantic echoes back as the rejected input.
    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError):
        errors = [_renderable(error) for error in exc.errors()]
        return JSONResponse({"detail": jsonable_encoder(errors)}, status_code=422)
