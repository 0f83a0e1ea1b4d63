from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, field_validator


class RegisterIn(BaseModel):
    email: EmailStr
    full_name: str
    password: str
    clinic_name: Optional[str] = None
    username: Optional[str] = None

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("full_name is required")
        return cleaned

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < 8:
            raise ValueError("password must be at least 8 characters")
        return value

    @field_validator("clinic_name", "username")
    @classmethod
    def normalize_optional(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "pharmacist@example.com",
                "full_name": "Ada Mensah",
                "password": "password123",
                "clinic_name": "Riverside Family Clinic",
                "username": "ada_mensah",
            }
        }
    )


class LoginIn(BaseModel):
    identifier: str
    password: str

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"identifier": "pharmacist@example.com", "password": "password123"}
        }
    )


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserProfileOut(BaseModel):
    id: str
    email: str
    username: str
    full_name: str | None = None
    clinic_id: str
    clinic_name: str
    role: str
    created_at: datetime
