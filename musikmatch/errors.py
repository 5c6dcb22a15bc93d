# musikmatch/errors.py
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class MusikmatchError(Exception):
    """Base error. `message` is shown to the user as-is."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(MusikmatchError):
    status_code = 422


class PermissionDenied(MusikmatchError):
    status_code = 403


class NotFound(MusikmatchError):
    status_code = 404


class OnboardingRequired(MusikmatchError):
    status_code = 409


class StoreError(MusikmatchError):
    """Remote or transient failure reported by Supabase."""

    status_code = 502


class MalformedRow(StoreError):
    pass


def install_handlers(app: FastAPI) -> None:
    @app.exception_handler(MusikmatchError)
    async def _musikmatch_error(request: Request, exc: MusikmatchError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
