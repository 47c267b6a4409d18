"""
Request/response payloads for the chat and outfit curation flows.

These are transient: built per request and handed straight back to the caller.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class ChatMessage(BaseModel):
    sender: Literal["user", "ai"]
    text: str


class ChatRequest(BaseModel):
    user_input: str = Field(..., description="The latest message from the user.")
    history: List[ChatMessage] = Field(default_factory=list, description="The conversation so far.")

    @field_validator("user_input")
    @classmethod
    def user_input_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("user_input must not be empty")
        return v.strip()


class ChatResponse(BaseModel):
    ai_response: str
    source: Literal["model", "scripted"] = "model"


class CurationRequest(BaseModel):
    occasion: str
    clothing_items: List[str] = Field(..., description="Clothing images as data URIs.")
    person_image_data_uri: Optional[str] = None

    @field_validator("occasion")
    @classmethod
    def occasion_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("occasion must not be empty")
        return v.strip()

    @field_validator("clothing_items")
    @classmethod
    def at_least_one_item(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("at least one clothing item is required")
        for uri in v:
            if not uri.startswith("data:"):
                raise ValueError("clothing items must be data URIs")
        return v


class CurationResult(BaseModel):
    outfit_suggestion: str
    generated_outfit_image_uri: Optional[str] = None
