from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    INPUT = "input"
    IMPORT = "import"
    PERSISTENCE = "persistence"
    BACKUP = "backup"
    AUTHENTICATION = "authentication"


class LedgerError(Exception):
    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INPUT,
        status_code: Optional[int] = None,
    ) -> None:
        self.message = message
        self.category = category
        self.status_code = status_code
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.category.value}] {self.message}"]
        if self.status_code:
            parts.append(f"(HTTP {self.status_code})")
        return " | ".join(parts)


class InvalidDateKeyError(LedgerError, ValueError):
    def __init__(self, value: object) -> None:
        super().__init__(f"Not a calendar date: {value!r}", ErrorCategory.INPUT)


class ImportParseError(LedgerError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCategory.IMPORT)


class PersistenceError(LedgerError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCategory.PERSISTENCE)


class BackupError(LedgerError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message, ErrorCategory.BACKUP, status_code)


class BackupAuthError(BackupError):
    def __init__(self, message: str = "Backup token rejected", status_code: Optional[int] = 401) -> None:
        super().__init__(message, status_code)
        self.category = ErrorCategory.AUTHENTICATION
