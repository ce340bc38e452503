"""
Pydantic schemas for chat messages and chat endpoints.
"""
from typing import Optional, List, Literal, Dict, Any
from pydantic import BaseModel, Field, model_validator


class ImageAttachment(BaseModel):
    """Homework photo attached to a question."""
    data_url: str = Field(..., description="Image as a data: URL or an https URL")
    name: Optional[str] = Field(None, description="Original file name")


class ChatMessage(BaseModel):
    """One transcript entry."""
    role: Literal["user", "assistant", "system"]
    content: str = ""
    image: Optional[ImageAttachment] = None
    local_only: bool = Field(
        False,
        description="Notices shown to the user but never sent to the AI"
    )


class ChatCompletionRequest(BaseModel):
    """Request schema for POST /chat/completions."""
    messages: List[ChatMessage] = Field(..., min_length=1, description="Conversation so far, newest last")

    @model_validator(mode="after")
    def has_question(self):
        latest = self.messages[-1]
        if latest.role != "user":
            raise ValueError("The newest message must be the user's question")
        if not latest.content.strip() and latest.image is None:
            raise ValueError("Question must have text or an image")
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "messages": [
                    {"role": "user", "content": "What is photosynthesis?"}
                ]
            }
        }


class ChatCompletionResponse(BaseModel):
    """Response schema for POST /chat/completions."""
    response: str = Field(..., description="Assistant reply")
    timestamp: str = Field(..., description="ISO-8601 time the reply was produced")
    usage: Dict[str, Any] = Field(..., description="Today's usage after this question")


class SubmitFrame(BaseModel):
    """Client -> server WebSocket frame asking a question."""
    type: Literal["submit"]
    question: str = ""
    image: Optional[ImageAttachment] = None
