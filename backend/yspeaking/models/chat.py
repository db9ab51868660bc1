from pydantic import BaseModel, Field, ConfigDict
from typing import List, Literal, Union


class TextPart(BaseModel):
    """Text content part of a multimodal message"""
    type: Literal["text"] = "text"
    text: str


class ImageUrl(BaseModel):
    """Image reference, usually a base64 data URL"""
    url: str


class ImageUrlPart(BaseModel):
    """Image content part of a multimodal message"""
    type: Literal["image_url"] = "image_url"
    image_url: ImageUrl


ContentPart = Union[TextPart, ImageUrlPart]


class ChatCompletionMessage(BaseModel):
    """Message with either text-only (string) or multimodal (array) content"""
    role: str = Field(..., pattern="^(system|user|assistant)$")
    content: Union[str, List[ContentPart]]

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "role": "user",
                    "content": "What is the capital of France?"
                },
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "What's in this image?"},
                        {
                            "type": "image_url",
                            "image_url": {"url": "data:image/jpeg;base64,iVBORw0KGgoAAAANSUhEUgAA..."}
                        }
                    ]
                }
            ]
        }
    )
