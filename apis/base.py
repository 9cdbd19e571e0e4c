from typing import Any

from fastapi.responses import JSONResponse


def success_response(**fields: Any) -> dict:
    return {"success": True, **fields}


def error_response(status_code: int, error: str, details: Any = None) -> JSONResponse:
    body = {"success": False, "error": error}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)
