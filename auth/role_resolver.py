"""
Role lookup against the profiles table.

Lookups fail closed: a missing profile, an unknown role name or a database
error all yield None, never an elevated role.
"""

from typing import List, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from auth.models import Identity, Profile, RoleRecord
from auth.roles import Principal, Role
from core.errors import NotFoundError, UpstreamError


def role_of(profile: Profile) -> Optional[Role]:
    if profile.role is None:
        # no role assigned yet
        return Role.USER
    return Role.parse(profile.role.name)


def resolve_role(session: Session, principal_id: str) -> Optional[Role]:
    """Stored role of a principal, `Role.USER` when unset, None on any failure."""
    try:
        profile = (
            session.query(Profile)
            .options(joinedload(Profile.role))
            .filter(Profile.id == principal_id)
            .first()
        )
    except SQLAlchemyError as e:
        logger.error(f"[ROLE] Role lookup failed for {principal_id}: {type(e).__name__}: {e}")
        return None

    if profile is None:
        logger.warning(f"[ROLE] No profile for principal {principal_id}")
        return None

    return role_of(profile)


def _to_principal(identity: Identity, profile: Optional[Profile], role: Optional[Role]) -> Principal:
    return Principal(
        id=identity.id,
        email=identity.email,
        first_name=(profile.first_name if profile else "") or "",
        last_name=(profile.last_name if profile else "") or "",
        role=role,
        is_active=identity.is_active and (profile.is_active if profile else True),
        email_verified=bool(profile.email_verified) if profile else False,
        avatar_url=profile.avatar_url if profile else None,
    )


def load_principal(session: Session, principal_id: str) -> Optional[Principal]:
    """
    Identity plus profile fields, without the role.

    Returns None when the identity is unknown or deactivated. The role is left
    unset; callers resolve it separately with `resolve_role`.
    """
    try:
        identity = (
            session.query(Identity)
            .options(joinedload(Identity.profile))
            .filter(Identity.id == principal_id)
            .first()
        )
    except SQLAlchemyError as e:
        logger.error(f"[PRINCIPAL] Lookup failed for {principal_id}: {type(e).__name__}: {e}")
        return None

    if identity is None or not identity.is_active:
        return None

    return _to_principal(identity, identity.profile, None)


def get_principal(session: Session, principal_id: str) -> Principal:
    """Principal with role, for admin views. Raises NotFoundError."""
    try:
        profile = (
            session.query(Profile)
            .options(joinedload(Profile.identity), joinedload(Profile.role))
            .filter(Profile.id == principal_id)
            .first()
        )
    except SQLAlchemyError as e:
        raise UpstreamError("User lookup failed", cause=e)

    if profile is None:
        raise NotFoundError("User not found")

    return _to_principal(profile.identity, profile, role_of(profile))


def list_principals_with_roles(session: Session) -> List[Principal]:
    """All profiles with their roles, ordered by first name."""
    try:
        profiles = (
            session.query(Profile)
            .options(joinedload(Profile.identity), joinedload(Profile.role))
            .order_by(Profile.first_name, Profile.id)
            .all()
        )
    except SQLAlchemyError as e:
        raise UpstreamError("User listing failed", cause=e)

    return [_to_principal(p.identity, p, role_of(p)) for p in profiles]


def role_record(session: Session, role: Role) -> RoleRecord:
    record = session.query(RoleRecord).filter_by(name=role.label).first()
    if record is None:
        raise NotFoundError(f"Role '{role.label}' not found")
    return record


def assign_role(session: Session, principal_id: str, role: Role) -> Principal:
    """Point the principal's profile at `role`. Single-statement update."""
    try:
        profile = session.query(Profile).filter_by(id=principal_id).first()
        if profile is None:
            logger.warning(f"[ROLE] User not found: {principal_id}")
            raise NotFoundError("User not found")

        profile.role_id = role_record(session, role).id
        session.flush()
    except SQLAlchemyError as e:
        logger.error(f"[ROLE] Error assigning role: {type(e).__name__}: {e}")
        raise UpstreamError("Role assignment failed", cause=e)

    logger.info(f"[ROLE] {principal_id} is now {role.label}")
    return get_principal(session, principal_id)
