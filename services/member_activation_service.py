"""
MemberActivationService - turns a temporary credential into a permanent password
"""

import re
from typing import Optional, Dict, Any, List
from repositories.user_repository import UserRepository
from services.audit_log_service import AuditLogService
from services.common.result import Result
from services.enums import ActivationStatus, ActivityAction, NotificationChannel, InvalidStatusTransition
from services.import_error_service import ErrorCode, format_error
from services.notification_channels import hash_activation_token
from services.temporary_password_service import TemporaryPasswordService
from utils.datetime_utils import utc_now
from logging_config import get_logger

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 8


def check_password_strength(password: Optional[str]) -> List[str]:
    """Unmet requirements for a permanent password (empty when acceptable)"""
    password = password or ''
    problems = []
    if len(password) < MIN_PASSWORD_LENGTH:
        problems.append(f'at least {MIN_PASSWORD_LENGTH} characters')
    if not re.search(r'[A-Z]', password):
        problems.append('an uppercase letter')
    if not re.search(r'[a-z]', password):
        problems.append('a lowercase letter')
    if not re.search(r'\d', password):
        problems.append('a number')
    return problems


class MemberActivationService:

    def __init__(self,
                 user_repository: UserRepository,
                 audit_log: AuditLogService,
                 password_service: TemporaryPasswordService):
        self.user_repository = user_repository
        self.audit_log = audit_log
        self.password_service = password_service

    @property
    def session(self):
        return self.user_repository.session

    def authenticate(self, username: str, password: str) -> Result[Any]:
        """
        Permanent-password login. Members still on a temporary credential
        must activate first.
        """
        username = (username or '').strip()
        user = self.user_repository.find_one_by(username=username) or \
            self.user_repository.find_by_member_id(username)
        if user is None or not user.is_active or not self.password_service.verify(password, user.password_hash):
            return Result.from_error(format_error(ErrorCode.INVALID_CREDENTIALS))

        if user.status != ActivationStatus.ACTIVATED:
            return Result.from_error(format_error(ErrorCode.INVALID_ACTIVATION_STATUS, {
                'member_id': user.member_id,
                'status': user.activation_status,
                'expected_status': ActivationStatus.ACTIVATED.value,
            }))

        self.user_repository.update(user, last_login=utc_now())
        self.session.commit()
        return Result.success(user)

    def verify_temporary_password(self, member_id: str, password: str) -> Result[Dict[str, Any]]:
        """
        Check a temporary password at login time. An expired credential moves
        the member to token_expired.
        """
        member = self.user_repository.find_by_member_id(member_id)
        if member is None or member.temporary_password_hash is None:
            return Result.from_error(format_error(ErrorCode.INVALID_CREDENTIALS))

        if member.is_temporary_password_expired():
            self._expire(member, actor_id=None)
            self.session.commit()
            return Result.from_error(format_error(ErrorCode.TOKEN_EXPIRED, {'member_id': member.member_id}))

        if not self.password_service.verify(password, member.temporary_password_hash):
            return Result.from_error(format_error(ErrorCode.INVALID_CREDENTIALS))

        return Result.success({'member_id': member.member_id, 'activation_status': member.activation_status})

    def complete_activation(self, member_id: str, temporary_password: str, new_password: str,
                            method='sms') -> Result[Dict[str, Any]]:
        try:
            method = NotificationChannel.parse(method)
        except ValueError:
            return Result.from_error(format_error(ErrorCode.INVALID_DELIVERY_METHOD, {'channel': method}))

        problems = check_password_strength(new_password)
        if problems:
            return Result.from_error(format_error(ErrorCode.WEAK_PASSWORD, {'reason': 'needs ' + ', '.join(problems)}))

        verified = self.verify_temporary_password(member_id, temporary_password)
        if verified.is_failure:
            return verified

        member = self.user_repository.find_by_member_id(member_id)
        return self._activate(member, new_password, method)

    def activate_with_token(self, token: str, new_password: str) -> Result[Dict[str, Any]]:
        """Activation through the emailed link"""
        problems = check_password_strength(new_password)
        if problems:
            return Result.from_error(format_error(ErrorCode.WEAK_PASSWORD, {'reason': 'needs ' + ', '.join(problems)}))

        member = self.user_repository.find_by_activation_token_hash(hash_activation_token(token or ''))
        if member is None:
            return Result.from_error(format_error(ErrorCode.INVALID_CREDENTIALS))

        # The link shares the lifetime of the temporary password issued with it
        if member.is_temporary_password_expired():
            self._expire(member, actor_id=None)
            self.session.commit()
            return Result.from_error(format_error(ErrorCode.TOKEN_EXPIRED, {'member_id': member.member_id}))

        return self._activate(member, new_password, NotificationChannel.EMAIL)

    def expire_stale_credentials(self, now=None, limit: int = 500) -> Result[Dict[str, Any]]:
        """Move every member whose temporary password has lapsed to token_expired"""
        now = now or utc_now()
        expired = []
        for member in self.user_repository.find_expired_pending(now, limit=limit):
            if self._expire(member, actor_id=None):
                expired.append(member.member_id)
        self.session.commit()
        if expired:
            logger.info("Temporary passwords expired", count=len(expired))
        return Result.success({'expired': len(expired), 'member_ids': expired})

    def _activate(self, member, new_password: str, method: NotificationChannel) -> Result[Dict[str, Any]]:
        try:
            self.user_repository.transition_status(member, ActivationStatus.ACTIVATED)
        except InvalidStatusTransition:
            return Result.from_error(format_error(ErrorCode.INVALID_ACTIVATION_STATUS, {
                'member_id': member.member_id,
                'status': member.activation_status,
                'expected_status': ActivationStatus.PENDING_ACTIVATION.value,
            }))

        now = utc_now()
        self.user_repository.update(
            member,
            password_hash=self.password_service.hash(new_password),
            temporary_password_hash=None,
            temporary_password_expires=None,
            activation_token_hash=None,
            activation_method=method.value,
            activated_at=now,
            last_password_change_at=now,
        )
        self.audit_log.record(
            member.id,
            ActivityAction.PASSWORD_CHANGE,
            f'Member {member.member_id} activated their account',
            {'member_id': member.member_id, 'activation_method': method.value, 'import_id': member.import_id},
        )
        self.session.commit()
        logger.info("Member activated", member_id=member.member_id, method=method.value)
        return Result.success({'member_id': member.member_id, 'activation_status': member.activation_status,
                               'activation_method': method.value})

    def _expire(self, member, actor_id: Optional[int]) -> bool:
        if member.status == ActivationStatus.TOKEN_EXPIRED:
            return False
        try:
            self.user_repository.transition_status(member, ActivationStatus.TOKEN_EXPIRED)
        except InvalidStatusTransition:
            return False
        self.audit_log.record(
            actor_id,
            ActivityAction.TOKEN_EXPIRED,
            f'Temporary password expired for member {member.member_id}',
            {'member_id': member.member_id, 'import_id': member.import_id},
        )
        return True
