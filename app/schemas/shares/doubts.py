from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.enum import DoubtStatus

MAX_TAGS = 10
MAX_TAG_LENGTH = 50


class CreateDoubtSchema(BaseModel):
    title: str = Field(..., min_length=3, max_length=200, description="Short question title")
    description: str = Field(
        ..., min_length=10, max_length=5000, description="Full question text"
    )
    tags: List[str] = Field(default_factory=list, description="Free-form tags")
    course_id: Optional[int] = Field(None, gt=0)
    lesson_id: Optional[int] = Field(None, gt=0)

    @field_validator("title", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        cleaned: list[str] = []
        for tag in v:
            if not isinstance(tag, str):
                continue
            tag = tag.strip()
            if tag and tag not in cleaned:
                cleaned.append(tag)
        return cleaned

    @field_validator("tags")
    @classmethod
    def limit_tags(cls, v: List[str]):
        if len(v) > MAX_TAGS:
            raise ValueError(f"At most {MAX_TAGS} tags are allowed")
        for tag in v:
            if len(tag) > MAX_TAG_LENGTH:
                raise ValueError(f"Tag '{tag[:20]}...' is longer than {MAX_TAG_LENGTH} characters")
        return v


class PostDoubtMessageSchema(BaseModel):
    # length bound is enforced by DoubtService (configurable)
    content: str = Field(..., description="Message text")


class UpdateDoubtStatusSchema(BaseModel):
    status: DoubtStatus

    @field_validator("status", mode="before")
    @classmethod
    def upper(cls, v):
        return v.upper() if isinstance(v, str) else v


class AssignInstructorSchema(BaseModel):
    instructor_id: Optional[int] = Field(
        None, gt=0, description="User id with INSTRUCTOR role, null to unassign"
    )


# ==========================================================
# Realtime payloads (camelCase on the wire)
# ==========================================================
class SocketSendMessageSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    thread_id: int = Field(..., gt=0, alias="threadId")
    content: str


class SocketTypingSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    thread_id: int = Field(..., gt=0, alias="threadId")
    is_typing: bool = Field(False, alias="isTyping")
