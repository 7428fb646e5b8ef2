"""
Verification Models

A Diagnostic is one finding of the Verifier. `code` names the error
class the finding corresponds to (e.g. 'AccountNotOpenError'), so a
caller can treat a diagnostic exactly like the exception the engine
would have raised had the bad content been submitted through it.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Severity(str, Enum):
    """Diagnostic severity."""
    ERROR = "error"
    WARNING = "warning"


class Diagnostic(BaseModel):
    """A single verification finding."""

    severity: Severity
    code: str = Field(
        ...,
        description="Error class name, e.g. 'ParseError' or 'UnbalancedTransactionError'"
    )
    file: str = Field(
        ...,
        description="Ledger file name relative to the data directory"
    )
    line: Optional[int] = Field(
        default=None,
        ge=1,
        description="1-based line number, when the finding has one"
    )
    message: str

    def __str__(self) -> str:
        location = f"{self.file}:{self.line}" if self.line else self.file
        return f"{location}: {self.severity.value}: {self.message} [{self.code}]"
