"""
Data models for the knowledge chat service.
"""
import base64
import binascii
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Document(BaseModel):
    """A knowledge base document as stored in the documents table."""
    id: Optional[str] = None
    title: str
    content: str
    source: str = "manual"
    embedding: Optional[List[float]] = None
    created_at: Optional[str] = None


class DocumentMatch(BaseModel):
    """Read-only projection of a Document plus its similarity to a query."""
    id: Optional[str] = None
    title: str
    content: str
    source: str = "unknown"
    similarity: float

    def to_context(self) -> Dict[str, str]:
        """Fields handed to the answer synthesizer."""
        return {"title": self.title, "content": self.content, "source": self.source}

    def to_reference(self) -> Dict[str, Any]:
        """Snapshot stored alongside a chat history entry."""
        return {
            "id": self.id,
            "title": self.title,
            "source": self.source,
            "similarity": self.similarity,
        }


class ConversationTurn(BaseModel):
    """One prior question/answer pair supplied by the client."""
    question: str = ""
    answer: str = ""


class ImageAttachment(BaseModel):
    """Base64-encoded image sent with a question."""
    model_config = ConfigDict(populate_by_name=True)

    mime_type: str = Field(alias="mimeType")
    data: str

    @field_validator("data")
    @classmethod
    def _valid_base64(cls, v: str) -> str:
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("image data must be base64 encoded")
        return v

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.data)


class ChatHistoryEntry(BaseModel):
    """Append-only audit record of one exchange."""
    session_id: Optional[str] = None
    question: str
    answer: str
    # Either a list of document references or a mode marker such as {"mode": "direct"}
    relevant_documents: Union[List[Dict[str, Any]], Dict[str, Any]] = Field(default_factory=list)
    image_attachments: Optional[List[Dict[str, str]]] = None

    def to_record(self) -> Dict[str, Any]:
        """Row payload for the chat history table."""
        record = {
            "session_id": self.session_id,
            "question": self.question,
            "answer": self.answer,
            "relevant_documents": self.relevant_documents,
        }
        if self.image_attachments:
            record["image_attachments"] = self.image_attachments
        return record


# ─────────────────────────────────────────────────────────────
# Request/Response Models
# ─────────────────────────────────────────────────────────────

class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    chat_history: List[ConversationTurn] = Field(default_factory=list, alias="chatHistory")
    images: List[ImageAttachment] = Field(default_factory=list)
    model_type: Literal["gemini", "ollama"] = Field(default="gemini", alias="modelType")

    @field_validator("question", mode="before")
    @classmethod
    def _non_string_question_is_missing(cls, v: Any) -> Optional[str]:
        # Non-string questions are reported as missing rather than as a schema error
        return v if isinstance(v, str) else None


class RelevantDocument(BaseModel):
    title: str
    source: str
    similarity: float


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    answer: str
    relevant_documents: List[RelevantDocument] = Field(default_factory=list, alias="relevantDocuments")


class DirectChatResponse(BaseModel):
    answer: str
    mode: str = "direct"


class DocumentCreate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    source: Optional[str] = None


class DocumentCreateResponse(BaseModel):
    message: str
    document: Optional[Dict[str, Any]] = None


class DocumentListResponse(BaseModel):
    documents: List[Dict[str, Any]]


class RegenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    regenerate_all: bool = Field(default=False, alias="regenerateAll")


class RegenerateResponse(BaseModel):
    message: str
    updated: int
    total: int


class InitResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    success_count: int = Field(alias="successCount")
    errors: Optional[List[str]] = None
