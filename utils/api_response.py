# utils/api_response.py
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from core.config import settings


def success_response(data: Any = None, message: str = "Operation successful", status_code: int = 200) -> JSONResponse:
    """``{"status": "success", "message": ..., "data": ...}``"""
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "success",
            "message": message,
            "data": jsonable_encoder(data, by_alias=True),
        },
    )


def error_response(message: str, status_code: int = 400, error: Optional[BaseException] = None) -> JSONResponse:
    content = {
        "status": "error",
        "message": message or "An error occurred",
        "data": None,
    }
    # error details only outside production
    if settings.DEBUG and error is not None:
        content["error"] = {"name": type(error).__name__, "message": str(error)}
    return JSONResponse(status_code=status_code, content=content)
