"""
Business logic for the admin and manager panels, the profile page and the
public contact form.

The service layer sits between the routes and the models:
- Validating input (raises ValidationError)
- Reading and writing rows through the request's session
- Wrapping SQLAlchemy failures into UpstreamError
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from email_validator import EmailNotValidError, validate_email
from loguru import logger
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth.auth_manager import log_activity
from auth.models import CONTACT_STATUSES, ActivityLog, ContactSubmission, Identity, Profile, RoleRecord
from auth.role_resolver import assign_role, get_principal, list_principals_with_roles, role_record
from auth.roles import Principal, Role
from core.errors import NotFoundError, UpstreamError, ValidationError

RECENT_ACTIVITY_DAYS = 7
DEFAULT_ACTIVITY_LIMIT = 100
MAX_ACTIVITY_LIMIT = 500


class UserAdminService:
    """User and role management (admin panel)."""

    @staticmethod
    def list_users(db: Session, role: Optional[str] = None) -> List[Dict[str, Any]]:
        principals = list_principals_with_roles(db)
        if role:
            wanted = Role.parse(role)
            if wanted is None:
                raise ValidationError("Invalid role", field="role")
            principals = [p for p in principals if p.role is wanted]
        return [p.to_dict() for p in principals]

    @staticmethod
    def change_role(db: Session, actor: Principal, user_id: str, role_name: str,
                    ip_address: str = None) -> Principal:
        role = Role.parse(role_name)
        if role is None:
            raise ValidationError("Invalid role", field="role")

        updated = assign_role(db, user_id, role)
        log_activity(db, actor.id, "ROLE_CHANGED", {"target_user": user_id, "role": role.label}, ip_address)
        return updated

    @staticmethod
    def update_user(db: Session, actor: Principal, user_id: str, first_name: Optional[str] = None,
                    last_name: Optional[str] = None, role_name: Optional[str] = None,
                    ip_address: str = None) -> Principal:
        """Edit name fields and, optionally, the role of another user."""
        role = None
        if role_name is not None:
            role = Role.parse(role_name)
            if role is None:
                raise ValidationError("Invalid role", field="role")

        try:
            profile = db.query(Profile).filter_by(id=user_id).first()
            if profile is None:
                raise NotFoundError("User not found")

            if first_name is not None:
                profile.first_name = first_name.strip()
            if last_name is not None:
                profile.last_name = last_name.strip()
            if role is not None:
                profile.role_id = role_record(db, role).id
            profile.updated_at = datetime.utcnow()
            db.flush()
        except SQLAlchemyError as e:
            logger.error(f"[ADMIN] Error updating user {user_id}: {e}")
            raise UpstreamError("User update failed", cause=e)

        log_activity(db, actor.id, "USER_UPDATED", {"target_user": user_id}, ip_address)
        return get_principal(db, user_id)

    @staticmethod
    def delete_user(db: Session, actor: Principal, user_id: str, ip_address: str = None):
        """
        Remove the profile row and deactivate the identity.

        Both changes are flushed together and commit with the request, so a
        failure leaves neither applied. The identity row is kept.
        """
        if user_id == actor.id:
            raise ValidationError("You cannot delete your own account")

        try:
            profile = db.query(Profile).filter_by(id=user_id).first()
            if profile is None:
                raise NotFoundError("User not found")

            identity = db.query(Identity).filter_by(id=user_id).first()
            if identity is not None:
                identity.is_active = False

            db.delete(profile)
            db.flush()
        except SQLAlchemyError as e:
            logger.error(f"[ADMIN] Error deleting user {user_id}: {e}")
            raise UpstreamError("User deletion failed", cause=e)

        log_activity(db, actor.id, "USER_DELETED", {"target_user": user_id}, ip_address)
        logger.info(f"[ADMIN] {actor.id} deleted user {user_id}")


class ActivityService:
    """Activity log queries shared by the admin and manager panels."""

    @staticmethod
    def recent(db: Session, limit: int = DEFAULT_ACTIVITY_LIMIT, action: Optional[str] = None) -> List[Dict[str, Any]]:
        limit = max(1, min(limit, MAX_ACTIVITY_LIMIT))
        try:
            query = (
                db.query(ActivityLog, Profile)
                .outerjoin(Profile, Profile.id == ActivityLog.user_id)
            )
            if action:
                query = query.filter(ActivityLog.action == action.upper())
            rows = query.order_by(ActivityLog.created_at.desc()).limit(limit).all()
        except SQLAlchemyError as e:
            raise UpstreamError("Activity lookup failed", cause=e)

        entries = []
        for log, profile in rows:
            entry = log.to_dict()
            entry["user_name"] = (
                f"{profile.first_name or ''} {profile.last_name or ''}".strip() if profile else None
            )
            entries.append(entry)
        return entries

    @staticmethod
    def count_since(db: Session, days: int = RECENT_ACTIVITY_DAYS) -> int:
        since = datetime.utcnow() - timedelta(days=days)
        return db.query(func.count(ActivityLog.id)).filter(ActivityLog.created_at >= since).scalar() or 0


class ContactService:
    """Contact form submissions."""

    @staticmethod
    def submit(db: Session, name: str, email: str, subject: str, message: str,
               ip_address: str = None) -> Dict[str, Any]:
        name, email, subject, message = (
            (name or "").strip(), (email or "").strip(), (subject or "").strip(), (message or "").strip()
        )
        if not name or not email or not subject or not message:
            raise ValidationError("All fields are required")
        try:
            email = validate_email(email, check_deliverability=False).normalized
        except EmailNotValidError as e:
            raise ValidationError(f"Invalid email address: {e}", field="email")

        submission = ContactSubmission(name=name, email=email, subject=subject, message=message, status="pending")
        try:
            db.add(submission)
            db.flush()
        except SQLAlchemyError as e:
            logger.error(f"[CONTACT] Error saving submission: {e}")
            raise UpstreamError("Failed to send message", cause=e)

        log_activity(db, None, "CONTACT_SUBMITTED", {"email": email, "subject": subject}, ip_address)
        return submission.to_dict()

    @staticmethod
    def list_messages(db: Session, status: Optional[str] = None) -> List[Dict[str, Any]]:
        query = db.query(ContactSubmission)
        if status:
            if status not in CONTACT_STATUSES:
                raise ValidationError("Invalid status", field="status")
            query = query.filter(ContactSubmission.status == status)
        try:
            rows = query.order_by(ContactSubmission.created_at.desc()).all()
        except SQLAlchemyError as e:
            raise UpstreamError("Message lookup failed", cause=e)
        return [row.to_dict() for row in rows]

    @staticmethod
    def update_status(db: Session, actor: Principal, message_id: str, status: str,
                      ip_address: str = None) -> Dict[str, Any]:
        if status not in CONTACT_STATUSES:
            raise ValidationError("Invalid status", field="status")

        submission = db.query(ContactSubmission).filter_by(id=message_id).first()
        if submission is None:
            raise NotFoundError("Message not found")

        submission.status = status
        submission.updated_at = datetime.utcnow()
        db.flush()

        log_activity(db, actor.id, "MESSAGE_STATUS_CHANGED", {"message_id": message_id, "status": status}, ip_address)
        return submission.to_dict()

    @staticmethod
    def counts(db: Session) -> Dict[str, int]:
        total = db.query(func.count(ContactSubmission.id)).scalar() or 0
        pending = (
            db.query(func.count(ContactSubmission.id))
            .filter(ContactSubmission.status == "pending")
            .scalar() or 0
        )
        return {"total": total, "pending": pending}


class ProfileService:
    @staticmethod
    def update_own_profile(db: Session, principal: Principal, first_name: str, last_name: str,
                           ip_address: str = None) -> Principal:
        first_name, last_name = (first_name or "").strip(), (last_name or "").strip()
        if not first_name or not last_name:
            raise ValidationError("First and last name are required")

        profile = db.query(Profile).filter_by(id=principal.id).first()
        if profile is None:
            raise NotFoundError("Profile not found")

        profile.first_name = first_name
        profile.last_name = last_name
        profile.updated_at = datetime.utcnow()
        db.flush()

        log_activity(db, principal.id, "PROFILE_UPDATED", {}, ip_address)
        return get_principal(db, principal.id)


def admin_overview(db: Session) -> Dict[str, Any]:
    """Numbers for the admin landing page."""
    try:
        total_users = db.query(func.count(Profile.id)).scalar() or 0
        admin_count = (
            db.query(func.count(Profile.id))
            .join(RoleRecord, Profile.role_id == RoleRecord.id)
            .filter(RoleRecord.name == Role.ADMIN.label)
            .scalar() or 0
        )
        recent = (
            db.query(Profile)
            .order_by(Profile.created_at.desc(), Profile.id)
            .limit(5)
            .all()
        )
        contacts = ContactService.counts(db)
        recent_activity = ActivityService.count_since(db)
    except SQLAlchemyError as e:
        raise UpstreamError("Overview lookup failed", cause=e)

    return {
        "total_users": total_users,
        "admin_count": admin_count,
        "recent_activity": recent_activity,
        "pending_contacts": contacts["pending"],
        "recent_users": [get_principal(db, p.id).to_dict() for p in recent],
    }


def manager_overview(db: Session) -> Dict[str, Any]:
    """Numbers for the manager landing page."""
    try:
        contacts = ContactService.counts(db)
        recent_activity = ActivityService.count_since(db)
    except SQLAlchemyError as e:
        raise UpstreamError("Overview lookup failed", cause=e)

    return {
        "recent_activity": recent_activity,
        "pending_contacts": contacts["pending"],
        "total_contacts": contacts["total"],
    }
