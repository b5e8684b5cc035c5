from typing import List, Literal, Optional, Union
from pydantic import BaseModel

Role = Literal["user", "assistant", "system"]


class Message(BaseModel):
    role: Role
    content: str


class Section(BaseModel):
    title: str
    level: Literal[2, 3]


class HealthEnv(BaseModel):
    apiKeySet: bool


class HealthResponse(BaseModel):
    status: str
    env: HealthEnv


class ResponseMetadata(BaseModel):
    model: str
    usage: Optional[dict] = None
    timestamp: str


class ChatRequest(BaseModel):
    messages: List[Message]


class ChatResponse(BaseModel):
    message: str
    metadata: ResponseMetadata


class CommentaryRequest(BaseModel):
    book: str
    chapter: Union[int, str]


class CommentaryResponse(BaseModel):
    commentary: str
    book: str
    chapter: Union[int, str]
    keyVerses: List[str]
    sections: List[Section]
    metadata: ResponseMetadata


class VerseAnalysisRequest(BaseModel):
    verse: str


class VerseAnalysisResponse(BaseModel):
    analysis: str
    verse: str
    relatedVerses: List[str]
    sections: List[Section]
    metadata: ResponseMetadata


class ErrorResponse(BaseModel):
    message: str
    error: bool = True


class ConversationMessage(BaseModel):
    role: Role
    content: str
    timestamp: str


class ConversationSaveRequest(BaseModel):
    ownerId: str
    conversationId: Optional[str] = None
    title: Optional[str] = None
    model: str
    userMessage: Message
    assistantMessage: Message
    history: List[Message] = []


class ConversationRecord(BaseModel):
    conversationId: str
    ownerId: str
    title: str
    createdAt: str
    updatedAt: str
    model: str
    messages: List[ConversationMessage]


class ConversationListResponse(BaseModel):
    items: List[ConversationRecord]


class LogResetResponse(BaseModel):
    reset: bool
