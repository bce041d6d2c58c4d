"""
Response envelope shared by every ledger API handler.

Bodies are always ``{"success": True, "data": ...}`` or
``{"success": False, "message": ...}``.  Status codes: 400 business rule,
403 permission, 404 not found, 503 transient database fault, 500 anything
unexpected (with a generic message; the exception is logged).
"""

from dataclasses import dataclass
from typing import Any

from ledger_kernel.exceptions import LedgerError
from ledger_kernel.logging_config import get_logger

logger = get_logger("api.envelope")

GENERIC_ERROR_MESSAGE = "An unexpected error occurred"


@dataclass(frozen=True)
class ApiResponse:
    status: int
    body: dict[str, Any]

    @property
    def ok(self) -> bool:
        return bool(self.body.get("success"))


def success(data: Any = None, status: int = 200) -> ApiResponse:
    return ApiResponse(status=status, body={"success": True, "data": data})


def failure(message: str, status: int = 400) -> ApiResponse:
    return ApiResponse(status=status, body={"success": False, "message": message})


def from_exception(exc: Exception) -> ApiResponse:
    if isinstance(exc, LedgerError):
        logger.info(
            "request_rejected",
            extra={"error_code": exc.code, "status": exc.http_status, "error": str(exc)},
        )
        return failure(str(exc), exc.http_status)
    logger.error("unhandled_exception", exc_info=exc)
    return failure(GENERIC_ERROR_MESSAGE, 500)
