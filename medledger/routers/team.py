import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from medledger.core.api_docs import error_responses
from medledger.core.deps import get_db
from medledger.core.permissions import require_permission
from medledger.core.security import hash_password
from medledger.core.security_current import ClinicAccess
from medledger.models.clinic import ClinicMembership
from medledger.models.user import User
from medledger.schemas.common import PaginationMeta
from medledger.schemas.team import (
    TeamMemberCreateIn,
    TeamMemberListOut,
    TeamMemberOut,
    TeamMemberUpdateIn,
)
from medledger.services.audit_service import log_audit_event
from medledger.services.user_service import find_user_by_email, generate_unique_username

router = APIRouter(prefix="/team", tags=["team"])


def _member_out(membership: ClinicMembership, user: User) -> TeamMemberOut:
    return TeamMemberOut(
        membership_id=membership.id,
        user_id=user.id,
        email=user.email,
        username=user.username,
        full_name=user.full_name,
        role=membership.role,
        is_active=membership.is_active,
        created_at=membership.created_at,
    )


def _enforce_manage_rules(
    *,
    access: ClinicAccess,
    target_membership: ClinicMembership,
    new_role: str | None,
    new_is_active: bool | None,
) -> None:
    actor_role = access.role
    target_role = (target_membership.role or "").lower()

    if target_membership.user_id == access.user.id and new_is_active is False:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own membership")
    if target_role == "owner":
        raise HTTPException(status_code=403, detail="Owner memberships cannot be modified")
    if actor_role == "admin":
        if target_role == "admin" and target_membership.user_id != access.user.id:
            raise HTTPException(status_code=403, detail="Admins cannot modify other admin memberships")
        if new_role == "admin":
            raise HTTPException(status_code=403, detail="Admins cannot assign the admin role")


@router.get(
    "/members",
    response_model=TeamMemberListOut,
    summary="List clinic members",
    responses=error_responses(401, 403, 422, 500),
)
def list_team_members(
    include_inactive: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: ClinicAccess = Depends(require_permission("team.manage")),
):
    count_stmt = select(func.count(ClinicMembership.id)).where(ClinicMembership.clinic_id == access.clinic.id)
    data_stmt = (
        select(ClinicMembership, User)
        .join(User, User.id == ClinicMembership.user_id)
        .where(ClinicMembership.clinic_id == access.clinic.id)
    )
    if not include_inactive:
        count_stmt = count_stmt.where(ClinicMembership.is_active.is_(True))
        data_stmt = data_stmt.where(ClinicMembership.is_active.is_(True))

    total = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        data_stmt.order_by(ClinicMembership.created_at.asc(), ClinicMembership.id.asc()).offset(offset).limit(limit)
    ).all()

    items = [_member_out(membership, user) for membership, user in rows]
    count = len(items)
    return TeamMemberListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.post(
    "/members",
    response_model=TeamMemberOut,
    status_code=201,
    summary="Create a clinic member account",
    description="Creates a login for a pharmacist or staff member and attaches it to the caller's clinic.",
    responses=error_responses(401, 403, 409, 422, 500),
)
def add_team_member(
    payload: TeamMemberCreateIn,
    db: Session = Depends(get_db),
    access: ClinicAccess = Depends(require_permission("team.manage")),
):
    if access.role == "admin" and payload.role == "admin":
        raise HTTPException(status_code=403, detail="Admins cannot assign the admin role")

    normalized_email = payload.email.lower()
    if find_user_by_email(db, normalized_email):
        raise HTTPException(status_code=409, detail="Email already registered")

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

    membership = ClinicMembership(
        id=str(uuid.uuid4()),
        clinic_id=access.clinic.id,
        user_id=user.id,
        role=payload.role,
        is_active=True,
    )
    db.add(membership)
    log_audit_event(
        db,
        clinic_id=access.clinic.id,
        actor_user_id=access.user.id,
        action="team.member.added",
        target_type="clinic_membership",
        target_id=membership.id,
        metadata_json={"user_id": user.id, "email": user.email, "role": payload.role},
    )
    db.commit()
    db.refresh(membership)
    return _member_out(membership, user)


@router.patch(
    "/members/{membership_id}",
    response_model=TeamMemberOut,
    summary="Change a member's role or deactivate them",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def update_team_member(
    membership_id: str,
    payload: TeamMemberUpdateIn,
    db: Session = Depends(get_db),
    access: ClinicAccess = Depends(require_permission("team.manage")),
):
    row = db.execute(
        select(ClinicMembership, User)
        .join(User, User.id == ClinicMembership.user_id)
        .where(
            ClinicMembership.id == membership_id,
            ClinicMembership.clinic_id == access.clinic.id,
        )
    ).first()
    if not row:
        raise HTTPException(status_code=404, detail="Membership not found")
    membership, member_user = row

    _enforce_manage_rules(
        access=access,
        target_membership=membership,
        new_role=payload.role,
        new_is_active=payload.is_active,
    )

    previous_state = {"role": membership.role, "is_active": membership.is_active}
    if payload.role is not None:
        membership.role = payload.role
    if payload.is_active is not None:
        membership.is_active = payload.is_active

    log_audit_event(
        db,
        clinic_id=access.clinic.id,
        actor_user_id=access.user.id,
        action="team.member.updated",
        target_type="clinic_membership",
        target_id=membership.id,
        metadata_json={
            "user_id": member_user.id,
            "previous": previous_state,
            "next": {"role": membership.role, "is_active": membership.is_active},
        },
    )
    db.commit()
    db.refresh(membership)
    return _member_out(membership, member_user)
