"""Pydantic models for the ragchat API."""

from __future__ import annotations

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter, model_validator

from ragchat.models import Answer, ChatQuery, ChatTurn, EmbeddingResult, EmbedQuery


class MessageModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: Literal["user", "assistant"] = Field(..., description="Author of the turn")
    content: str = Field(..., min_length=1, description="Text of the turn")


class ChatRequestModel(BaseModel):
    """Conversation so far; the last message is the question to answer."""

    model_config = ConfigDict(extra="ignore")

    action: Literal["chat"] = "chat"
    messages: List[MessageModel] = Field(..., min_length=1, description="Ordered conversation history")

    @model_validator(mode="after")
    def _last_message_is_question(self) -> "ChatRequestModel":
        last = self.messages[-1]
        if last.role != "user":
            raise ValueError("the last message must come from the user")
        if not last.content.strip():
            raise ValueError("the last message must not be blank")
        return self

    def to_query(self) -> ChatQuery:
        history = tuple(ChatTurn(role=message.role, content=message.content) for message in self.messages[:-1])
        return ChatQuery(history=history, question=self.messages[-1].content)


class EmbedRequestModel(BaseModel):
    """Embed-only request."""

    model_config = ConfigDict(extra="ignore")

    action: Literal["embed"]
    text: str = Field(..., min_length=1, description="Text to embed")

    def to_query(self) -> EmbedQuery:
        return EmbedQuery(text=self.text)


def _request_tag(value: Any) -> str:
    if isinstance(value, dict):
        return value.get("action", "chat")
    return getattr(value, "action", "chat")


RequestBody = Annotated[
    Union[
        Annotated[ChatRequestModel, Tag("chat")],
        Annotated[EmbedRequestModel, Tag("embed")],
    ],
    Discriminator(_request_tag),
]

request_adapter: TypeAdapter[Union[ChatRequestModel, EmbedRequestModel]] = TypeAdapter(RequestBody)


class CitationModel(BaseModel):
    id: str
    similarity: float


class ChatResponse(BaseModel):
    response: str
    citations: List[CitationModel] = Field(default_factory=list)

    @classmethod
    def from_answer(cls, answer: Answer) -> "ChatResponse":
        return cls(
            response=answer.text,
            citations=[CitationModel(id=c.id, similarity=c.similarity) for c in answer.citations],
        )


class EmbedResponse(BaseModel):
    embedding: List[float]
    dimensions: int

    @classmethod
    def from_result(cls, result: EmbeddingResult) -> "EmbedResponse":
        return cls(embedding=list(result.vector), dimensions=result.dimensions)


class ErrorResponse(BaseModel):
    error: str
    retry_after: Optional[float] = Field(default=None, description="Seconds until the rate limit window resets")
    correlation_id: Optional[str] = None
