from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str
    confirm_password: str
    first_name: str = ""
    last_name: str = ""
    institution: Optional[str] = Field(None, max_length=200)


class PasswordResetRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    redirect_url: Optional[str] = None


class PasswordUpdate(BaseModel):
    password: str
    confirm_password: str


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    institution: Optional[str] = Field(None, max_length=200)
    bio: Optional[str] = Field(None, max_length=2000)
    expertise_areas: Optional[List[str]] = Field(None, max_length=20)

    @field_validator("first_name", "last_name", "institution", "bio", mode="before")
    @classmethod
    def normalize_optional_text_fields(cls, v):
        """
        允许前端传空白字符串；两端空白统一去掉。
        """
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("expertise_areas")
    @classmethod
    def validate_expertise_length(cls, v):
        if v:
            for item in v:
                if len(item) > 50:
                    raise ValueError("Expertise tag must be less than 50 characters")
            return [item.strip() for item in v if item and item.strip()]
        return v


class AdminCreateUserRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    role: str = "author"
    institution: Optional[str] = Field(None, max_length=200)
    password: Optional[str] = None


class RoleChangeRequest(BaseModel):
    role: str
    reason: str = Field("", max_length=500)
