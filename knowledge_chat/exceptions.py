"""
Errors surfaced to API callers.

Provider and store failures are not represented here: they degrade into
result values (see models/results.py) and never reach the caller.
"""
from typing import Any, Dict, Optional


class KnowledgeChatError(Exception):
    """Base class for errors rendered as ``{"error": message}``."""

    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def payload(self) -> Dict[str, Any]:
        return {"error": self.message}


class InvalidRequestError(KnowledgeChatError):
    """Malformed or incomplete request. No side effects have happened yet."""

    status_code = 400
    message = "Invalid request"


class QuestionRequiredError(InvalidRequestError):
    message = "Question is required"


class DocumentFieldsRequiredError(InvalidRequestError):
    message = "Title and content are required"


class RegenerateFlagRequiredError(InvalidRequestError):
    message = "regenerateAll flag is required"


class StoreSetupRequiredError(InvalidRequestError):
    """Raised by maintenance endpoints when the documents table is missing."""

    message = "データベーステーブルが見つかりません"

    def __init__(self, details: str = ""):
        super().__init__()
        self.details = details

    def payload(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "message": "Supabaseで以下のSQLスキーマを実行してください:",
            "sql_schema_needed": "supabase-schema.sql",
            "details": self.details,
        }
