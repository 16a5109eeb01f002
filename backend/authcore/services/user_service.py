"""User service - admin-side user management"""

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List, Optional, Tuple
import logging

from authcore.core.exceptions import (
    AuthorizationError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
)
from authcore.core.security import hash_password
from authcore.models.rbac import Role
from authcore.models.user import Profile, User
from authcore.schemas.user import ProfileUpdate, UserCreate, UserUpdate
from authcore.services.audit_service import audit_service, get_changes
from authcore.services.rbac_service import rbac_service
from authcore.services.session_service import session_service

logger = logging.getLogger(__name__)

_USER_FIELDS = ("email", "name", "is_active", "is_blocked")
_PROFILE_FIELDS = ("first_name", "last_name", "display_name", "avatar")


def _snapshot(user: User) -> dict:
    return {field: getattr(user, field) for field in _USER_FIELDS}


class UserService:
    """Service for user management"""

    @staticmethod
    def create_user(db: Session, user_data: UserCreate, created_by: Optional[str] = None) -> User:
        """
        Create new user with an empty profile and the requested roles

        Args:
            db: Database session
            user_data: User creation data
            created_by: Acting admin ID

        Returns:
            Created user
        """
        if db.query(User.id).filter(User.email == user_data.email).first():
            raise ResourceAlreadyExistsError("User")

        roles = []
        if user_data.roles:
            roles = db.query(Role).filter(Role.slug.in_(user_data.roles), Role.is_active == True).all()  # noqa: E712
            missing = set(user_data.roles) - {role.slug for role in roles}
            if missing:
                raise ResourceNotFoundError(f"Role {', '.join(sorted(missing))}")

        user = User(
            email=user_data.email,
            password_hash=hash_password(user_data.password),
            name=user_data.name,
            is_active=user_data.is_active,
        )
        user.profile = Profile()
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ResourceAlreadyExistsError("User")
        db.refresh(user)

        for role in roles:
            rbac_service.assign_role(db, user.id, role.id, assigned_by=created_by)

        audit_service.log_event(
            db,
            action="user.created",
            entity="User",
            entity_id=user.id,
            user_id=created_by,
            new_values={**_snapshot(user), "roles": [role.slug for role in roles]},
        )
        logger.info(f"Created user: {user.email}")
        return user

    @staticmethod
    def get_user(db: Session, user_id: str) -> User:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise ResourceNotFoundError("User")
        return user

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        """Get user by email"""
        return db.query(User).filter(User.email == email.strip().lower()).first()

    @staticmethod
    def list_users(
        db: Session,
        page: int = 1,
        page_size: int = 20,
        search: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Tuple[List[User], int]:
        """
        List users, newest first

        Args:
            db: Database session
            page: 1-based page number
            page_size: Rows per page
            search: Optional substring of email or name
            is_active: Optional active filter

        Returns:
            Tuple of (users, total count)
        """
        query = db.query(User)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(or_(User.email.like(pattern), User.name.ilike(pattern)))
        if is_active is not None:
            query = query.filter(User.is_active == is_active)

        total = query.count()
        users = (
            query.order_by(User.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return users, total

    @staticmethod
    def update_user(db: Session, user_id: str, data: UserUpdate, updated_by: Optional[str] = None) -> User:
        user = UserService.get_user(db, user_id)
        changes = data.model_dump(exclude_unset=True)

        if "email" in changes and changes["email"] != user.email:
            if db.query(User.id).filter(User.email == changes["email"], User.id != user.id).first():
                raise ResourceAlreadyExistsError("User")

        before = _snapshot(user)
        for field, value in changes.items():
            setattr(user, field, value)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ResourceAlreadyExistsError("User")
        db.refresh(user)

        # Deactivating or blocking ends every live session.
        if (before["is_active"] and not user.is_active) or (not before["is_blocked"] and user.is_blocked):
            session_service.revoke_all_for_user(db, user.id, revoked_by=updated_by, reason="user_disabled")

        old_values, new_values = get_changes(before, _snapshot(user))
        audit_service.log_event(
            db,
            action="user.updated",
            entity="User",
            entity_id=user.id,
            user_id=updated_by,
            old_values=old_values,
            new_values=new_values,
        )
        return user

    @staticmethod
    def delete_user(db: Session, user_id: str, deleted_by: Optional[str] = None) -> bool:
        """
        Soft-delete user: deactivate and revoke every session

        Args:
            db: Database session
            user_id: User ID
            deleted_by: Acting admin ID

        Returns:
            True if deactivated
        """
        user = UserService.get_user(db, user_id)
        if deleted_by and user.id == deleted_by:
            raise AuthorizationError("Cannot delete your own account")

        user.is_active = False
        db.commit()
        session_service.revoke_all_for_user(db, user.id, revoked_by=deleted_by, reason="user_deleted")

        audit_service.log_event(
            db,
            action="user.deleted",
            entity="User",
            entity_id=user.id,
            user_id=deleted_by,
            old_values={"is_active": True},
            new_values={"is_active": False},
        )
        logger.info(f"Deactivated user: {user.email}")
        return True

    @staticmethod
    def force_logout(db: Session, user_id: str, revoked_by: Optional[str] = None) -> int:
        """Revoke every session of a user on an admin's behalf."""
        user = UserService.get_user(db, user_id)
        count = session_service.revoke_all_for_user(db, user.id, revoked_by=revoked_by, reason="admin_forced")

        audit_service.log_event(
            db,
            action="user.force_logout",
            entity="User",
            entity_id=user.id,
            user_id=revoked_by,
            new_values={"sessions_revoked": count},
        )
        return count

    @staticmethod
    def get_profile(db: Session, user_id: str) -> Optional[Profile]:
        return UserService.get_user(db, user_id).profile

    @staticmethod
    def update_profile(db: Session, user_id: str, data: ProfileUpdate) -> Profile:
        """
        Create or update the user's profile

        Args:
            db: Database session
            user_id: Profile owner
            data: Fields to change; unset fields are kept

        Returns:
            Updated profile
        """
        user = UserService.get_user(db, user_id)
        profile = user.profile
        if profile is None:
            profile = Profile(user_id=user.id)
            db.add(profile)
            before = {}
        else:
            before = {field: getattr(profile, field) for field in _PROFILE_FIELDS}

        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(profile, field, value)
        db.commit()
        db.refresh(profile)

        old_values, new_values = get_changes(before, {field: getattr(profile, field) for field in _PROFILE_FIELDS})
        audit_service.log_event(
            db,
            action="profile.updated",
            entity="Profile",
            entity_id=profile.id,
            user_id=user.id,
            user_email=user.email,
            old_values=old_values,
            new_values=new_values,
        )
        return profile


# Singleton instance
user_service = UserService()
