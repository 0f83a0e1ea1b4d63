from dataclasses import dataclass

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import case, select
from sqlalchemy.orm import Session

from medledger.core.deps import get_db
from medledger.core.security import TokenValidationError, decode_access_token
from medledger.models.clinic import Clinic, ClinicMembership
from medledger.models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


@dataclass(frozen=True)
class ClinicAccess:
    clinic: Clinic
    user: User
    role: str
    membership_id: str


def _membership_role_rank():
    return case(
        (ClinicMembership.role == "owner", 0),
        (ClinicMembership.role == "admin", 1),
        (ClinicMembership.role == "pharmacist", 2),
        (ClinicMembership.role == "staff", 3),
        else_=4,
    )


def resolve_clinic_access(db: Session, user: User) -> ClinicAccess | None:
    row = db.execute(
        select(ClinicMembership, Clinic)
        .join(Clinic, Clinic.id == ClinicMembership.clinic_id)
        .where(
            ClinicMembership.user_id == user.id,
            ClinicMembership.is_active.is_(True),
        )
        .order_by(_membership_role_rank(), ClinicMembership.created_at.asc())
        .limit(1)
    ).first()
    if not row:
        return None

    membership, clinic = row
    role = (membership.role or "staff").lower()
    return ClinicAccess(clinic=clinic, user=user, role=role, membership_id=membership.id)


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    try:
        payload = decode_access_token(token)
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    user = db.execute(select(User).where(User.id == payload["sub"])).scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_clinic_access(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
) -> ClinicAccess:
    access = resolve_clinic_access(db, user)
    if not access:
        raise HTTPException(status_code=404, detail="Clinic not found")
    return access
