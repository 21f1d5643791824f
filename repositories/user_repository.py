"""
UserRepository - Data access layer for member accounts
Isolates all database queries related to users and imported members
"""

from typing import List, Optional, Dict, Any, Iterable
from datetime import datetime
from sqlalchemy import or_, func
from sqlalchemy.exc import SQLAlchemyError
from repositories.base_repository import BaseRepository, PaginationParams, PaginatedResult, SortOrder
from coop_database import User
from services.enums import ActivationStatus, NotificationChannel
import logging

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = ('created_at', 'member_id', 'full_name', 'activation_status', 'sms_sent_at', 'email_sent_at')


class UserRepository(BaseRepository[User]):
    """Repository for User data access"""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, User)

    def search(self, query: str, fields: Optional[List[str]] = None) -> List[User]:
        """
        Search users by text query across multiple fields.

        Args:
            query: Search query string
            fields: Specific fields to search (default: member_id, full_name, phone_number, email)

        Returns:
            List of matching users
        """
        if not query:
            return []

        try:
            return self.session.query(User).filter(self._search_condition(query, fields)).all()
        except SQLAlchemyError as e:
            logger.error(f"Error searching users: {e}")
            return []

    def find_by_member_id(self, member_id: str) -> Optional[User]:
        if not member_id:
            return None
        return self.find_one_by(member_id=member_id.strip())

    def find_by_phone_number(self, phone_number: str) -> Optional[User]:
        if not phone_number:
            return None
        return self.find_one_by(phone_number=phone_number.strip())

    def find_by_email(self, email: str) -> Optional[User]:
        if not email:
            return None
        try:
            return self.session.query(User).filter(func.lower(User.email) == email.strip().lower()).first()
        except SQLAlchemyError as e:
            logger.error(f"Error finding user by email: {e}")
            return None

    def find_by_import(self, import_id: int,
                       statuses: Optional[Iterable[ActivationStatus]] = None,
                       exclude_statuses: Optional[Iterable[ActivationStatus]] = None) -> List[User]:
        """Members created by an import, in creation order"""
        try:
            query = self.session.query(User).filter(User.import_id == import_id)
            if statuses is not None:
                query = query.filter(User.activation_status.in_([ActivationStatus(s).value for s in statuses]))
            if exclude_statuses is not None:
                query = query.filter(
                    User.activation_status.notin_([ActivationStatus(s).value for s in exclude_statuses])
                )
            return query.order_by(User.id.asc()).all()
        except SQLAlchemyError as e:
            logger.error(f"Error finding members for import {import_id}: {e}")
            return []

    def count_by_status(self, import_id: Optional[int] = None) -> Dict[str, int]:
        """Member counts keyed by activation status"""
        try:
            query = self.session.query(User.activation_status, func.count(User.id))
            if import_id is not None:
                query = query.filter(User.import_id == import_id)
            else:
                query = query.filter(User.import_id.isnot(None))
            return {status: total for status, total in query.group_by(User.activation_status).all()}
        except SQLAlchemyError as e:
            logger.error(f"Error counting members by status: {e}")
            return {}

    def find_imported_members(self,
                              pagination: PaginationParams,
                              status: Optional[str] = None,
                              search: Optional[str] = None,
                              import_id: Optional[int] = None,
                              sort_by: str = 'created_at',
                              sort_order: SortOrder = SortOrder.DESC) -> PaginatedResult[User]:
        """
        Filtered, sorted, paginated listing of imported members.

        Args:
            pagination: Page and page size
            status: Exact activation status filter
            search: Case-insensitive substring over member_id, name, phone, email
            import_id: Restrict to one import operation
            sort_by: One of SORTABLE_FIELDS, anything else falls back to created_at
            sort_order: Sort direction
        """
        try:
            query = self.session.query(User).filter(User.import_id.isnot(None))
            if import_id is not None:
                query = query.filter(User.import_id == import_id)
            if status:
                query = query.filter(User.activation_status == status)
            if search:
                query = query.filter(self._search_condition(search.strip()))

            if sort_by not in SORTABLE_FIELDS:
                sort_by = 'created_at'
            query = self._apply_order(query, sort_by, sort_order)
            # Stable ordering for equal sort keys
            query = query.order_by(User.id.asc())

            return self._paginate(query, pagination)
        except SQLAlchemyError as e:
            logger.error(f"Error listing imported members: {e}")
            return PaginatedResult(items=[], total=0, page=pagination.page, per_page=pagination.per_page)

    def find_failed_notifications(self, channel: NotificationChannel, max_retries: int,
                                  limit: int = 100) -> List[User]:
        """Imported members stuck in a channel's failure state that still have retries left"""
        channel = NotificationChannel(channel)
        failed_status = ActivationStatus.failed_for(channel)
        retry_column = User.sms_retry_count if channel == NotificationChannel.SMS else User.email_retry_count
        try:
            return (
                self.session.query(User)
                .filter(User.import_id.isnot(None))
                .filter(User.activation_status == failed_status.value)
                .filter(retry_column < max_retries)
                .order_by(User.id.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"Error finding failed {channel.value} notifications: {e}")
            return []

    def find_expired_pending(self, now: datetime, limit: int = 500) -> List[User]:
        """Members still waiting on a temporary password that has already expired"""
        try:
            return (
                self.session.query(User)
                .filter(User.activation_status.in_([
                    ActivationStatus.PENDING_ACTIVATION.value,
                    ActivationStatus.SMS_FAILED.value,
                    ActivationStatus.EMAIL_FAILED.value,
                ]))
                .filter(User.temporary_password_expires.isnot(None))
                .filter(User.temporary_password_expires <= now)
                .order_by(User.id.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"Error finding expired temporary passwords: {e}")
            return []

    def find_by_activation_token_hash(self, token_hash: str) -> Optional[User]:
        if not token_hash:
            return None
        return self.find_one_by(activation_token_hash=token_hash)

    def transition_status(self, user: User, new_status: ActivationStatus) -> User:
        """
        Move a member through the activation state machine.

        Raises:
            InvalidStatusTransition: If the change is not in the transition table
        """
        target = user.status.validate_transition(new_status)
        if target.value != user.activation_status:
            logger.info(f"Member {user.member_id} status {user.activation_status} -> {target.value}")
            user.activation_status = target.value
            self.session.flush()
        return user

    def restore_pending(self, user: User) -> bool:
        """
        Put a member whose invitation failed or expired back to pending_activation.

        Returns:
            True if the status changed
        """
        if not (user.status.is_notification_failure or user.status == ActivationStatus.TOKEN_EXPIRED):
            return False
        self.transition_status(user, ActivationStatus.PENDING_ACTIVATION)
        return True

    def record_retry_attempt(self, user: User, channel: NotificationChannel, attempted_at: datetime) -> int:
        """
        Atomically increment a channel's retry counter and stamp the attempt time.

        Returns:
            The counter value after the increment
        """
        count_field, last_field = self._retry_fields(channel)
        count_column = getattr(User, count_field)
        self.session.query(User).filter(User.id == user.id).update(
            {count_column: count_column + 1, getattr(User, last_field): attempted_at},
            synchronize_session='fetch'
        )
        self.session.flush()
        self.session.refresh(user)
        return getattr(user, count_field)

    def reset_retry_state(self, user: User, channel: NotificationChannel) -> User:
        count_field, last_field = self._retry_fields(channel)
        return self.update(user, **{count_field: 0, last_field: None})

    @staticmethod
    def _retry_fields(channel: NotificationChannel):
        channel = NotificationChannel(channel)
        return f'{channel.value}_retry_count', f'{channel.value}_last_retry_at'

    @staticmethod
    def _search_condition(query: str, fields: Optional[List[str]] = None):
        search_fields = fields or ['member_id', 'full_name', 'phone_number', 'email']
        pattern = f'%{query}%'
        return or_(*[getattr(User, field).ilike(pattern) for field in search_fields if hasattr(User, field)])
