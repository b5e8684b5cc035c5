"""Per-view session state for the study tools.

Each view (chat, advanced chat, commentary, verse analyzer) owns one session
object. A session talks to the HTTP backend through a ``StudyClient`` and keeps
its own message history, loading flag, error string and server status.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Union

import requests
from pydantic import BaseModel

from study_api.models import Section
from study_api.ref_parser import extract_key_verses, extract_related_verses, extract_sections

DEFAULT_BASE_URL = "http://localhost:3001"

NO_KEY_ERROR = "OpenAI API key is not configured on the server"
OFFLINE_ERROR = "Cannot connect to the server"
UNEXPECTED_ERROR = "An unexpected error occurred"
ASSISTANT_ERROR_REPLY = "Sorry, I encountered an error. Please try again later."


class ServerStatus(str, Enum):
    UNKNOWN = "unknown"
    CHECKING = "checking"
    ONLINE = "online"
    OFFLINE = "offline"
    NO_KEY = "no-key"


class SessionState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"


class RequestFailed(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class StudyClient:
    def __init__(self, base_url: str = DEFAULT_BASE_URL, http=None):
        self.base_url = base_url.rstrip("/")
        self.http = http or requests.Session()

    def health(self) -> dict:
        res = self.http.get(f"{self.base_url}/api/health")
        if not res.ok:
            raise RequestFailed(OFFLINE_ERROR, res.status_code)
        return res.json()

    def post(self, path: str, body: dict, default_error: str = "Failed to get response") -> dict:
        res = self.http.post(f"{self.base_url}{path}", json=body)
        if not res.ok:
            try:
                data = res.json()
            except ValueError:
                data = {}
            message = data.get("message") if isinstance(data, dict) else None
            raise RequestFailed(message or default_error, res.status_code)
        return res.json()


class CommentaryResult(BaseModel):
    book: str
    chapter: Union[int, str]
    content: str
    sections: List[Section]
    key_verses: List[str]
    timestamp: str


class AnalysisResult(BaseModel):
    verse: str
    content: str
    sections: List[Section]
    related_verses: List[str]
    timestamp: str


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _failure_message(exc: Exception) -> str:
    if isinstance(exc, RequestFailed):
        return exc.message
    if isinstance(exc, requests.RequestException):
        return OFFLINE_ERROR
    return str(exc) or UNEXPECTED_ERROR


class ToolSession:
    def __init__(self, client: StudyClient):
        self.client = client
        self.server_status = ServerStatus.UNKNOWN
        self.state = SessionState.IDLE
        self.error = ""

    @property
    def is_loading(self) -> bool:
        return self.state is SessionState.SENDING

    @property
    def can_send(self) -> bool:
        return self.server_status is ServerStatus.ONLINE and not self.is_loading

    def check_server_status(self) -> bool:
        self.server_status = ServerStatus.CHECKING
        try:
            data = self.client.health()
        except (requests.RequestException, RequestFailed, ValueError):
            self.server_status = ServerStatus.OFFLINE
            return False
        api_key_set = bool((data.get("env") or {}).get("apiKeySet"))
        self.server_status = ServerStatus.ONLINE if api_key_set else ServerStatus.NO_KEY
        return api_key_set

    def _status_error(self) -> str:
        if self.server_status is ServerStatus.NO_KEY:
            return NO_KEY_ERROR
        return OFFLINE_ERROR

    def _begin(self) -> None:
        self.state = SessionState.SENDING
        self.error = ""

    def _finish(self) -> None:
        self.state = SessionState.IDLE


class ChatSession(ToolSession):
    def __init__(
        self,
        client: StudyClient,
        advanced: bool = False,
        owner_id: Optional[str] = None,
        persist: bool = False,
        on_event: Optional[Callable[[str, dict], None]] = None,
    ):
        super().__init__(client)
        self.endpoint = "/api/chat/advanced" if advanced else "/api/chat"
        self.owner_id = owner_id
        self.persist = persist
        self.on_event = on_event
        self.messages: List[dict] = []
        self.conversation_id: Optional[str] = None
        self.title = ""
        self.last_outcome: Optional[str] = None

    def send_message(self, text: str) -> bool:
        if not text or not text.strip() or self.is_loading:
            return False
        self._begin()
        try:
            if self.server_status in (ServerStatus.UNKNOWN, ServerStatus.CHECKING):
                self.check_server_status()
            if self.server_status is not ServerStatus.ONLINE:
                self.error = self._status_error()
                self.last_outcome = "error"
                return False

            prior = list(self.messages)
            user_message = {"role": "user", "content": text}
            self.messages.append(user_message)
            history = [{"role": m["role"], "content": m["content"]} for m in self.messages]
            try:
                data = self.client.post(self.endpoint, {"messages": history})
                reply = data["message"]
            except (requests.RequestException, RequestFailed, ValueError, KeyError) as exc:
                self.error = _failure_message(exc)
                self.messages.append(
                    {"role": "assistant", "content": ASSISTANT_ERROR_REPLY, "error": True}
                )
                self.last_outcome = "error"
                return False

            metadata = data.get("metadata") or {}
            assistant_message = {
                "role": "assistant",
                "content": reply,
                "metadata": {"timestamp": metadata.get("timestamp") or _now(), "model": metadata.get("model")},
            }
            self.messages.append(assistant_message)
            self.last_outcome = "success"
            if self.persist and self.owner_id:
                self._save_turn(user_message, assistant_message, prior)
            return True
        finally:
            self._finish()

    def _save_turn(self, user_message: dict, assistant_message: dict, prior: List[dict]) -> None:
        body = {
            "ownerId": self.owner_id,
            "conversationId": self.conversation_id,
            "title": self.title or None,
            "model": assistant_message["metadata"].get("model") or "",
            "userMessage": {"role": "user", "content": user_message["content"]},
            "assistantMessage": {"role": "assistant", "content": assistant_message["content"]},
            "history": [{"role": m["role"], "content": m["content"]} for m in prior],
        }
        try:
            record = self.client.post("/api/conversations", body)
        except (requests.RequestException, RequestFailed, ValueError) as exc:
            # Chat keeps working without history.
            if self.on_event:
                self.on_event("conversation_save_failed", {"error": _failure_message(exc)})
            return
        self.conversation_id = record.get("conversationId")
        self.title = record.get("title") or self.title

    def clear_messages(self) -> None:
        self.messages = []
        self.error = ""
        self.conversation_id = None
        self.title = ""
        self.last_outcome = None


class CommentarySession(ToolSession):
    def __init__(self, client: StudyClient):
        super().__init__(client)
        self.result: Optional[CommentaryResult] = None

    def fetch_commentary(self, book: str, chapter) -> Optional[CommentaryResult]:
        if self.is_loading:
            return None
        self._begin()
        try:
            if not self.check_server_status():
                self.error = self._status_error()
                return None
            try:
                data = self.client.post(
                    "/api/tools/bible-commentary",
                    {"book": book, "chapter": chapter},
                    default_error="Failed to get commentary",
                )
                content = data["commentary"]
            except (requests.RequestException, RequestFailed, ValueError, KeyError) as exc:
                self.error = _failure_message(exc)
                self.result = None
                return None
            self.result = CommentaryResult(
                book=book,
                chapter=chapter,
                content=content,
                sections=extract_sections(content),
                key_verses=extract_key_verses(content),
                timestamp=_now(),
            )
            return self.result
        finally:
            self._finish()


class VerseAnalysisSession(ToolSession):
    def __init__(self, client: StudyClient):
        super().__init__(client)
        self.result: Optional[AnalysisResult] = None

    def analyze_verse(self, verse: str) -> Optional[AnalysisResult]:
        if self.is_loading:
            return None
        self._begin()
        try:
            if not self.check_server_status():
                self.error = self._status_error()
                return None
            try:
                data = self.client.post(
                    "/api/tools/verse-analyzer",
                    {"verse": verse},
                    default_error="Failed to analyze verse",
                )
                content = data["analysis"]
            except (requests.RequestException, RequestFailed, ValueError, KeyError) as exc:
                self.error = _failure_message(exc)
                self.result = None
                return None
            self.result = AnalysisResult(
                verse=verse,
                content=content,
                sections=extract_sections(content),
                related_verses=extract_related_verses(content),
                timestamp=_now(),
            )
            return self.result
        finally:
            self._finish()
