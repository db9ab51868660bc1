"""
Models of the conversation REST contract.

Field names follow the JSON the frontend and the mock backend exchange
(camelCase), exposed as snake_case attributes.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChatAttachment(CamelModel):
    """Uploaded file as referenced by a message"""
    uid: str
    name: str = ""
    size: Optional[int] = None
    type: Optional[str] = None
    url: Optional[str] = None


class Conversation(CamelModel):
    id: str
    title: str
    created_at: str = Field(alias="createdAt")


class ChatMessageModel(CamelModel):
    id: str
    conversation_id: str = Field(alias="conversationId")
    text: str
    attachments: Optional[List[ChatAttachment]] = None
    role: Optional[Literal["user", "assistant"]] = None
    created_at: str = Field(alias="createdAt")
    # Client-only: placeholder for a reply still being generated
    is_loading: bool = Field(default=False, exclude=True)


class CreateConversationRequest(BaseModel):
    title: Optional[str] = None


class RenameConversationRequest(BaseModel):
    title: str


class SendMessageRequest(BaseModel):
    text: str = ""
    attachments: Optional[List[dict]] = None
    role: Literal["user", "assistant"] = "user"


class UploadResponse(BaseModel):
    attachments: List[ChatAttachment] = Field(default_factory=list)
