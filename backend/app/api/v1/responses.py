"""
Rendering of operation results as HTTP responses.
"""

from fastapi import status
from fastapi.responses import JSONResponse
from backend.app.domain.results import ActionResult


def render(result: ActionResult, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """Success -> success_status; failure -> the error's own status code."""
    return JSONResponse(
        status_code=success_status if result.success else result.status_code,
        content=result.to_dict(),
    )
