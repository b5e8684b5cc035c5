import os
from datetime import datetime, timezone

import psycopg2
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from study_api.completion import (
    ADVANCED_CHAT,
    CHAT,
    COMMENTARY,
    VERSE_ANALYSIS,
    Completion,
    ToolProfile,
    build_commentary_messages,
    build_verse_analysis_messages,
    complete,
    require_api_key,
)
from study_api.config import API_TITLE, API_VERSION, CONVERSATION_STORE_DB, DB, get_api_key
from study_api.conversations import ensure_schema, store
from study_api.errors import ConfigurationError, StudyError, ValidationError
from study_api.events import log_api_event, reset_event_log
from study_api.models import (
    ChatRequest,
    ChatResponse,
    CommentaryRequest,
    CommentaryResponse,
    ConversationListResponse,
    ConversationRecord,
    ConversationSaveRequest,
    ErrorResponse,
    HealthResponse,
    LogResetResponse,
    VerseAnalysisRequest,
    VerseAnalysisResponse,
)
from study_api.ref_parser import (
    extract_key_verses,
    extract_related_verses,
    extract_sections,
    find_reference,
)

app = FastAPI(title=API_TITLE, version=API_VERSION)

CORS_ALLOW_ALL = os.getenv("CORS_ALLOW_ALL", "1") == "1"
if CORS_ALLOW_ALL:
    allow_origins = ["*"]
else:
    raw_origins = os.getenv(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173",
    )
    allow_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

EVENT_LOG_RESET_ON_STARTUP = os.getenv("EVENT_LOG_RESET_ON_STARTUP", "0") == "1"
ALLOW_LOG_RESET = os.getenv("ALLOW_LOG_RESET", "1") == "1"

GENERIC_FAILURE = "Something went wrong"
ERROR_RESPONSES = {500: {"model": ErrorResponse}}


@app.on_event("startup")
def _reset_event_log_on_startup() -> None:
    if EVENT_LOG_RESET_ON_STARTUP:
        reset_event_log("startup")


@app.on_event("startup")
def _ensure_conversation_schema() -> None:
    if not CONVERSATION_STORE_DB:
        return
    conn = psycopg2.connect(**DB)
    try:
        ensure_schema(conn)
    finally:
        conn.close()


def _envelope(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"message": message, "error": True, **extra},
    )


@app.exception_handler(HTTPException)
def handle_http_exception(_request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": str(exc.detail), "error": True},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
def handle_validation_exception(_request: Request, exc: RequestValidationError):
    return _envelope(422, "invalid request", details=_validation_details(exc))


@app.exception_handler(Exception)
def handle_unexpected_exception(_request: Request, exc: Exception):
    log_api_event("api_unhandled_error", {"error": type(exc).__name__})
    return _envelope(500, GENERIC_FAILURE)


def _validation_details(exc: RequestValidationError) -> list:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


def get_conn():
    if not CONVERSATION_STORE_DB:
        yield None
        return
    try:
        conn = psycopg2.connect(**DB)
    except psycopg2.OperationalError:
        log_api_event("conversation_db_unavailable", {})
        yield None
        return
    try:
        yield conn
    finally:
        conn.close()


def _metadata(result: Completion) -> dict:
    return {
        "model": result.model,
        "usage": result.usage,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def _failure(exc: Exception, profile: ToolProfile) -> JSONResponse:
    if isinstance(exc, ConfigurationError):
        log_api_event("api_config_missing", {"tool": profile.name})
    else:
        log_api_event(
            "api_request_failed",
            {"tool": profile.name, "error": type(exc).__name__},
        )
    if isinstance(exc, StudyError):
        return _envelope(exc.status_code, exc.message)
    return _envelope(500, GENERIC_FAILURE)


@app.get("/api/health", response_model=HealthResponse)
def health():
    return {"status": "ok", "env": {"apiKeySet": bool(get_api_key())}}


def _relay_chat(profile: ToolProfile, payload: ChatRequest):
    try:
        api_key = require_api_key()
        if not payload.messages:
            raise ValidationError("messages must not be empty")
        log_api_event("api_chat", {"tool": profile.name, "messages": len(payload.messages)})
        result = complete(profile, [m.model_dump() for m in payload.messages], api_key=api_key)
    except Exception as exc:
        return _failure(exc, profile)
    return {"message": result.text, "metadata": _metadata(result)}


@app.post("/api/chat", response_model=ChatResponse, responses=ERROR_RESPONSES)
def chat(payload: ChatRequest):
    return _relay_chat(CHAT, payload)


@app.post("/api/chat/advanced", response_model=ChatResponse, responses=ERROR_RESPONSES)
def chat_advanced(payload: ChatRequest):
    return _relay_chat(ADVANCED_CHAT, payload)


@app.post(
    "/api/tools/bible-commentary",
    response_model=CommentaryResponse,
    responses=ERROR_RESPONSES,
)
def bible_commentary(payload: CommentaryRequest):
    try:
        api_key = require_api_key()
        book = payload.book.strip()
        if not book or str(payload.chapter).strip() == "":
            raise ValidationError("book and chapter are required")
        log_api_event("api_commentary", {"book": book, "chapter": str(payload.chapter)})
        result = complete(COMMENTARY, build_commentary_messages(book, payload.chapter), api_key=api_key)
    except Exception as exc:
        return _failure(exc, COMMENTARY)

    return {
        "commentary": result.text,
        "book": payload.book,
        "chapter": payload.chapter,
        "keyVerses": extract_key_verses(result.text),
        "sections": extract_sections(result.text),
        "metadata": _metadata(result),
    }


@app.post(
    "/api/tools/verse-analyzer",
    response_model=VerseAnalysisResponse,
    responses=ERROR_RESPONSES,
)
def verse_analyzer(payload: VerseAnalysisRequest):
    try:
        api_key = require_api_key()
        verse = payload.verse.strip()
        if not verse:
            raise ValidationError("verse is required")
        ref = find_reference(verse)
        log_api_event(
            "api_verse_analysis",
            {"reference": f"{ref[0]} {ref[1]}:{ref[2]}-{ref[3]}" if ref else None},
        )
        result = complete(VERSE_ANALYSIS, build_verse_analysis_messages(verse), api_key=api_key)
    except Exception as exc:
        return _failure(exc, VERSE_ANALYSIS)

    return {
        "analysis": result.text,
        "verse": payload.verse,
        "relatedVerses": extract_related_verses(result.text),
        "sections": extract_sections(result.text),
        "metadata": _metadata(result),
    }


def _record_payload(record: dict) -> dict:
    return {
        "conversationId": record["conversation_id"],
        "ownerId": record["owner_id"],
        "title": record["title"],
        "createdAt": record["created_at"],
        "updatedAt": record["updated_at"],
        "model": record["model"],
        "messages": record["messages"],
    }


@app.post("/api/conversations", response_model=ConversationRecord, responses=ERROR_RESPONSES)
def save_conversation_turn(payload: ConversationSaveRequest, conn=Depends(get_conn)):
    owner_id = payload.ownerId.strip()
    if not owner_id:
        return _envelope(400, "ownerId is required")
    if payload.conversationId:
        existing = store.get(payload.conversationId, conn=conn)
        if existing and existing["owner_id"] != owner_id:
            raise HTTPException(status_code=403, detail="conversation belongs to another user")
    record = store.save_turn(
        owner_id,
        payload.conversationId,
        payload.userMessage.model_dump(),
        payload.assistantMessage.model_dump(),
        payload.model,
        title=payload.title,
        history=[m.model_dump() for m in payload.history],
        conn=conn,
    )
    return _record_payload(record)


@app.get("/api/conversations", response_model=ConversationListResponse)
def list_conversations(ownerId: str = Query(..., min_length=1), conn=Depends(get_conn)):
    records = store.list_for_owner(ownerId, conn=conn)
    log_api_event("conversation_list", {"owner_id": ownerId, "count": len(records)})
    return {"items": [_record_payload(r) for r in records]}


@app.get("/api/conversations/{conversation_id}", response_model=ConversationRecord)
def get_conversation(conversation_id: str, conn=Depends(get_conn)):
    record = store.get(conversation_id, conn=conn)
    if not record:
        raise HTTPException(status_code=404, detail="conversation not found")
    return _record_payload(record)


@app.post("/api/logs/reset", response_model=LogResetResponse)
def reset_logs():
    if not ALLOW_LOG_RESET:
        raise HTTPException(status_code=403, detail="log reset disabled")
    reset_event_log("client")
    return {"reset": True}
