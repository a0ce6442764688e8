"""
Result types for provider and store calls that degrade instead of raising.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Union

from knowledge_chat.models.schemas import DocumentMatch


@dataclass
class EmbeddingResult:
    """Embedding vector, or a placeholder vector when the provider failed."""
    vector: List[float]
    degraded: bool = False
    error: Optional[str] = None


@dataclass
class GenerationResult:
    """Model output, or the fixed apology text when the provider failed."""
    text: str
    degraded: bool = False
    error: Optional[str] = None


@dataclass
class SearchMatches:
    """A search tier ran successfully. An empty list is a valid outcome."""
    documents: List[DocumentMatch] = field(default_factory=list)
    tier: str = ""


@dataclass
class SearchUnavailable:
    """A search tier could not run; the next tier should be tried."""
    tier: str
    reason: str = ""


SearchOutcome = Union[SearchMatches, SearchUnavailable]
