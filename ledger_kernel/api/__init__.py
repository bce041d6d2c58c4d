"""Request handlers and the response envelope."""

from ledger_kernel.api.envelope import ApiResponse, failure, from_exception, success
from ledger_kernel.api.handlers import LedgerApi

__all__ = [
    "ApiResponse",
    "LedgerApi",
    "failure",
    "from_exception",
    "success",
]
