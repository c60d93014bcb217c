from pydantic import BaseModel, Field, EmailStr, field_validator
from typing import Optional
import re


class UpdateUserRequest(BaseModel):
    """Profile patch. Passwords are handled by the identity provider."""

    name: Optional[str] = Field(None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=500)
    role: Optional[str] = Field(None, min_length=1, max_length=50)

    model_config = {"extra": "forbid"}

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        if v is None:
            return v
        cleaned = re.sub(r"[\s\-\(\)]", "", v)
        if not cleaned.replace("+", "").isdigit():
            raise ValueError("Invalid phone number format")
        return cleaned
