from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, field_validator, model_validator

from medledger.schemas.common import PaginationMeta

ASSIGNABLE_TEAM_ROLES = {"admin", "pharmacist", "staff"}


def _validate_role(value: str) -> str:
    role = value.strip().lower()
    if role not in ASSIGNABLE_TEAM_ROLES:
        raise ValueError("role must be one of: admin, pharmacist, staff")
    return role


class TeamMemberCreateIn(BaseModel):
    email: EmailStr
    full_name: str
    password: str
    role: str = "staff"
    username: str | None = None

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

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: str) -> str:
        return _validate_role(value)

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "email": "dispensary@example.com",
                "full_name": "Kofi Owusu",
                "password": "password123",
                "role": "pharmacist",
            }
        },
    )


class TeamMemberUpdateIn(BaseModel):
    role: str | None = None
    is_active: bool | None = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _validate_role(value)

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "TeamMemberUpdateIn":
        if self.role is None and self.is_active is None:
            raise ValueError("At least one field must be provided")
        return self

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={"example": {"role": "pharmacist", "is_active": True}},
    )


class TeamMemberOut(BaseModel):
    membership_id: str
    user_id: str
    email: EmailStr
    username: str
    full_name: str | None = None
    role: str
    is_active: bool
    created_at: datetime


class TeamMemberListOut(BaseModel):
    items: list[TeamMemberOut]
    pagination: PaginationMeta
