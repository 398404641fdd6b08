"""
Uniform response envelope.

Every response body is ``{success, data|error, timestamp}``. The timestamp
is taken when the envelope is built, not when the request arrived.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..core.errors import ErrorCode

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
}


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _wire(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    return jsonable_encoder(data)


def success_body(data: Any = None) -> Dict[str, Any]:
    return {"success": True, "data": _wire(data), "timestamp": utc_timestamp()}


def error_body(
    code: Union[ErrorCode, str],
    message: str,
    correlation_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    error: Dict[str, Any] = {
        "code": code.value if isinstance(code, ErrorCode) else code,
        "message": message,
        "correlationId": correlation_id or "unknown",
    }
    if details:
        error["details"] = jsonable_encoder(details)
    return {"success": False, "error": error, "timestamp": utc_timestamp()}


def success_response(
    data: Any = None,
    status_code: int = 200,
    no_store: bool = False,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Wrap ``data`` in a success envelope."""
    merged = dict(NO_STORE_HEADERS) if no_store else {}
    merged.update(headers or {})
    return JSONResponse(
        status_code=status_code, content=success_body(data), headers=merged
    )
