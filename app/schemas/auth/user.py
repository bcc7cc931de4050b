from typing import Annotated

from pydantic import BaseModel, EmailStr, Field


class UserCreate(BaseModel):
    name: Annotated[str, Field(min_length=1, max_length=100)]
    email: EmailStr
    password: Annotated[str, Field(min_length=6, max_length=72)]


class LoginUser(BaseModel):
    email: EmailStr
    password: str


class PublicUser(BaseModel):
    id: int
    name: str
    role: str
    avatar_url: str | None = None

    class Config:
        from_attributes = True
