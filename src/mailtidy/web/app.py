"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mailtidy.errors import GmailAuthError, MailtidyError


def create_app(context=None) -> FastAPI:
    """Build the API app around one shared AppContext.

    Pass ``context`` to reuse an existing one; otherwise it is built
    from the loaded config on first request.
    """
    app = FastAPI(title="mailtidy", version="0.1.0")
    app.state.context = context

    @app.exception_handler(GmailAuthError)
    async def _auth_error(request: Request, exc: GmailAuthError):
        return JSONResponse(
            status_code=401,
            content={"error": str(exc), "requires_reauth": True},
        )

    @app.exception_handler(MailtidyError)
    async def _mailtidy_error(request: Request, exc: MailtidyError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    from mailtidy.web.api import router as api_router
    app.include_router(api_router, prefix="/api")

    return app
