"""
Knowledge Chat API
Retrieval-augmented chat over a Supabase document store, plus direct chat
and document maintenance endpoints.
"""
import logging

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from knowledge_chat.config import get_settings
from knowledge_chat.dependencies import get_chat_pipeline, get_document_service
from knowledge_chat.exceptions import KnowledgeChatError, RegenerateFlagRequiredError
from knowledge_chat.models.schemas import (
    ChatRequest,
    ChatResponse,
    DirectChatResponse,
    DocumentCreate,
    DocumentCreateResponse,
    DocumentListResponse,
    InitResponse,
    RegenerateRequest,
    RegenerateResponse,
)
from knowledge_chat.services.chat_pipeline import ChatPipeline
from knowledge_chat.services.document_service import DocumentService
from knowledge_chat.services.document_store import SupabaseDocumentStore, get_document_store
from knowledge_chat.services.generation_service import GeminiGenerator, get_generator

settings = get_settings()

logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

# Configure logging for terminal readability
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.processors.TimeStamper(fmt="%H:%M:%S"),
        structlog.dev.ConsoleRenderer()  # Human-readable format in terminal
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

# Create FastAPI app
app = FastAPI(
    title="Knowledge Chat",
    description="Retrieval-augmented chat over an internal knowledge base",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

INTERNAL_ERROR = {"error": "Internal server error"}


# ─────────────────────────────────────────────────────────────
# Error Handlers
# ─────────────────────────────────────────────────────────────

@app.exception_handler(KnowledgeChatError)
async def knowledge_chat_error_handler(request: Request, exc: KnowledgeChatError):
    logger.warning("Request rejected", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.payload())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning("Malformed request body", path=request.url.path, errors=str(exc.errors()))
    return JSONResponse(status_code=400, content={"error": "Invalid request"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", path=request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content=INTERNAL_ERROR)


# ─────────────────────────────────────────────────────────────
# Chat
# ─────────────────────────────────────────────────────────────

@app.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    pipeline: ChatPipeline = Depends(get_chat_pipeline)
):
    """
    Answer a question from the knowledge base.
    """
    return await pipeline.answer(request)


@app.post("/simple-chat", response_model=DirectChatResponse)
async def simple_chat(
    request: ChatRequest,
    pipeline: ChatPipeline = Depends(get_chat_pipeline)
):
    """
    Answer a question without retrieval (Gemini or local Ollama model).
    """
    return await pipeline.direct_answer(request)


# ─────────────────────────────────────────────────────────────
# Documents
# ─────────────────────────────────────────────────────────────

@app.post("/documents", response_model=DocumentCreateResponse)
async def create_document(
    payload: DocumentCreate,
    service: DocumentService = Depends(get_document_service)
):
    """Add a document to the knowledge base."""
    document = await service.add_document(payload)
    return DocumentCreateResponse(message="Document added successfully", document=document)


@app.get("/documents", response_model=DocumentListResponse)
async def list_documents(service: DocumentService = Depends(get_document_service)):
    """List documents, newest first."""
    documents = await service.list_documents()
    return DocumentListResponse(documents=documents)


@app.put("/documents", response_model=RegenerateResponse)
async def regenerate_embeddings(
    payload: RegenerateRequest,
    service: DocumentService = Depends(get_document_service)
):
    """Generate embeddings for documents that do not have one."""
    if not payload.regenerate_all:
        raise RegenerateFlagRequiredError()

    result = await service.regenerate_missing_embeddings()
    return RegenerateResponse(**result)


@app.post("/init", response_model=InitResponse, response_model_exclude_none=True)
async def init_sample_documents(service: DocumentService = Depends(get_document_service)):
    """Seed the sample FAQ documents."""
    result = await service.seed_sample_documents()
    return InitResponse(**result)


# ─────────────────────────────────────────────────────────────
# Helper Endpoints
# ─────────────────────────────────────────────────────────────

@app.get("/status")
async def status(store: SupabaseDocumentStore = Depends(get_document_store)):
    """Database and search-function diagnostics."""
    return await store.status_report(settings.embedding_dimensions)


@app.get("/models")
async def list_models(generator: GeminiGenerator = Depends(get_generator)):
    """List Gemini models available to the configured API key."""
    api_key_status = "configured" if settings.gemini_api_key else "missing"
    try:
        models = await generator.list_models()
    except Exception as e:
        logger.error("Model listing failed", error=str(e))
        return JSONResponse(status_code=500, content={
            "error": "Failed to list models",
            "details": str(e),
            "api_key_status": api_key_status,
        })

    return {"api_key_status": api_key_status, "available_models": models}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("knowledge_chat.main:app", host="0.0.0.0", port=8000, reload=True)
