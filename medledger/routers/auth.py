import uuid

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from medledger.core.api_docs import error_responses
from medledger.core.config import settings
from medledger.core.deps import get_db
from medledger.core.security import create_access_token, hash_password, verify_password
from medledger.core.security_current import ClinicAccess, get_current_clinic_access
from medledger.models.clinic import Clinic, ClinicMembership
from medledger.models.user import User
from medledger.schemas.auth import LoginIn, RegisterIn, TokenOut, UserProfileOut
from medledger.services.user_service import find_user_by_email, generate_unique_username

router = APIRouter(prefix="/auth", tags=["auth"])


def _authenticate_user(db: Session, identifier: str, password: str) -> User:
    normalized_identifier = identifier.strip().lower()
    user = db.execute(
        select(User).where(
            or_(
                func.lower(User.email) == normalized_identifier,
                func.lower(User.username) == normalized_identifier,
            )
        )
    ).scalar_one_or_none()

    if not user or not user.is_active or not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return user


@router.post(
    "/register",
    response_model=TokenOut,
    summary="Register an operator",
    description="Creates a user, a clinic owned by that user, and returns an access token.",
    responses=error_responses(400, 422, 500),
)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    normalized_email = payload.email.lower()
    if find_user_by_email(db, normalized_email):
        raise HTTPException(status_code=400, detail="Email already registered")

    user = User(
        email=normalized_email,
        username=generate_unique_username(
            db,
            preferred_username=payload.username,
            fallback_seed=normalized_email.split("@")[0],
        ),
        full_name=payload.full_name,
        hashed_password=hash_password(payload.password),
    )
    db.add(user)
    db.flush()

    clinic = Clinic(
        id=str(uuid.uuid4()),
        owner_user_id=user.id,
        name=payload.clinic_name or f"{payload.full_name} Clinic",
        currency=settings.default_currency,
    )
    db.add(clinic)
    db.flush()
    db.add(
        ClinicMembership(
            id=str(uuid.uuid4()),
            clinic_id=clinic.id,
            user_id=user.id,
            role="owner",
            is_active=True,
        )
    )
    db.commit()
    return TokenOut(access_token=create_access_token(user.id))


@router.post(
    "/login",
    response_model=TokenOut,
    summary="Login with email or username",
    responses=error_responses(401, 422, 500),
)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = _authenticate_user(db, payload.identifier, payload.password)
    return TokenOut(access_token=create_access_token(user.id))


@router.post(
    "/token",
    response_model=TokenOut,
    summary="OAuth2 password flow token endpoint",
    responses=error_responses(401, 422, 500),
)
def token(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    user = _authenticate_user(db, form_data.username, form_data.password)
    return TokenOut(access_token=create_access_token(user.id))


@router.get(
    "/me",
    response_model=UserProfileOut,
    summary="Current operator profile",
    responses=error_responses(401, 404, 500),
)
def me(access: ClinicAccess = Depends(get_current_clinic_access)):
    return UserProfileOut(
        id=access.user.id,
        email=access.user.email,
        username=access.user.username,
        full_name=access.user.full_name,
        clinic_id=access.clinic.id,
        clinic_name=access.clinic.name,
        role=access.role,
        created_at=access.user.created_at,
    )
