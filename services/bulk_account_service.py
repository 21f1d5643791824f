"""
BulkAccountService - creates member accounts from validated CSV rows

Rows are processed strictly in file order and each row is committed on its
own: a row that fails never takes earlier rows with it, and an interrupted
import leaves everything processed so far readable under its import id.
Every row ends up as exactly one of created, skipped (duplicate) or failed.
"""

import secrets
from typing import List, Optional, Dict, Any
from sqlalchemy.exc import SQLAlchemyError
from repositories.user_repository import UserRepository
from repositories.import_operation_repository import ImportOperationRepository
from services.audit_log_service import AuditLogService
from services.common.result import Result
from services.csv_validation_service import MemberRow
from services.enums import ActivationStatus, ActivityAction, ImportStatus, UserRole
from services.import_error_service import ImportErrorService, ErrorCode, format_error, is_duplicate_code
from services.notification_service import NotificationService
from services.temporary_password_service import TemporaryPasswordService
from logging_config import get_logger

logger = get_logger(__name__)


def placeholder_email(member_id: str, domain: str) -> str:
    return f"member_{member_id}@{domain}"


class BulkAccountService:
    """Turns validated member rows into pending accounts and sends the first SMS"""

    def __init__(self,
                 user_repository: UserRepository,
                 import_operation_repository: ImportOperationRepository,
                 audit_log: AuditLogService,
                 error_service: ImportErrorService,
                 password_service: TemporaryPasswordService,
                 notification_service: NotificationService,
                 placeholder_email_domain: str = 'members.invalid'):
        self.user_repository = user_repository
        self.import_operation_repository = import_operation_repository
        self.audit_log = audit_log
        self.error_service = error_service
        self.password_service = password_service
        self.notification_service = notification_service
        self.placeholder_email_domain = placeholder_email_domain

    @property
    def session(self):
        return self.user_repository.session

    def create_accounts(self,
                        valid_rows: List[MemberRow],
                        csv_file_name: str,
                        admin_id: Optional[int],
                        admin_name: Optional[str]) -> Result[Dict[str, Any]]:
        """
        Create one pending account per row and send each new member an SMS.

        Returns:
            Result with {import_operation, created_members, statistics}
        """
        try:
            import_operation = self.import_operation_repository.create_pending(
                csv_file_name=csv_file_name,
                admin_id=admin_id,
                admin_name=admin_name,
                total_rows=len(valid_rows),
            )
            self.import_operation_repository.commit()
        except SQLAlchemyError as e:
            formatted = format_error(ErrorCode.IMPORT_OPERATION_ERROR, {'reason': str(e)})
            self.error_service.log_error(admin_id, formatted, {'csv_file_name': csv_file_name})
            self.session.commit()
            logger.error("Import operation could not be created", csv_file_name=csv_file_name, error=str(e))
            return Result.from_error(formatted)

        import_id = import_operation.id
        stats = {
            'successful_imports': 0,
            'failed_imports': 0,
            'skipped_rows': 0,
            'sms_sent_count': 0,
            'sms_failed_count': 0,
        }
        import_errors: List[Dict[str, Any]] = []
        created_members: List[Dict[str, Any]] = []

        logger.info("Bulk import started", import_id=import_id, total_rows=len(valid_rows), admin_id=admin_id)

        for row in valid_rows:
            outcome = self._process_row(row, import_id, admin_id)
            if outcome['status'] == 'created':
                stats['successful_imports'] += 1
                stats['sms_sent_count' if outcome['member']['sms_sent'] else 'sms_failed_count'] += 1
                created_members.append(outcome['member'])
            else:
                stats['skipped_rows' if outcome['status'] == 'skipped' else 'failed_imports'] += 1
                import_errors.append(outcome['error'])

        import_operation = self._finalize(import_id, stats, admin_id)

        self.audit_log.record(
            admin_id,
            ActivityAction.BULK_IMPORT,
            f'Bulk imported {stats["successful_imports"]} members from CSV file "{csv_file_name}". '
            f'Failed: {stats["failed_imports"]}, Skipped: {stats["skipped_rows"]}',
            {'import_id': import_id, 'total_rows': len(valid_rows), **stats},
        )
        self.session.commit()

        logger.info("Bulk import completed", import_id=import_id, **stats)
        return Result.success({
            'import_operation': import_operation.to_dict() if import_operation else {'id': import_id},
            'created_members': created_members,
            'statistics': {'total_rows': len(valid_rows), **stats, 'import_errors': import_errors},
        })

    def _process_row(self, row: MemberRow, import_id: int, admin_id: Optional[int]) -> Dict[str, Any]:
        """Handle one row. Never raises."""
        try:
            duplicate = self._find_duplicate(row)
            if duplicate:
                return self._row_error(row, import_id, admin_id, duplicate, status='skipped', audit=False)

            try:
                temporary_password = self.password_service.generate()
                temporary_password_hash = self.password_service.hash(temporary_password)
                throwaway_hash = self.password_service.hash(secrets.token_urlsafe(32))
            except (ValueError, TypeError) as e:
                formatted = format_error(ErrorCode.PASSWORD_GENERATION_ERROR,
                                         {'member_id': row.member_id, 'reason': str(e)})
                return self._row_error(row, import_id, admin_id, formatted, status='failed')

            try:
                member = self.user_repository.create(
                    member_id=row.member_id,
                    username=f"member_{row.member_id}",
                    full_name=row.name,
                    phone_number=row.phone_number,
                    email=row.email or placeholder_email(row.member_id, self.placeholder_email_domain),
                    has_real_email=bool(row.email),
                    role=UserRole.MEMBER.value,
                    password_hash=throwaway_hash,
                    activation_status=ActivationStatus.PENDING_ACTIVATION.value,
                    temporary_password_hash=temporary_password_hash,
                    temporary_password_expires=self.password_service.new_expiry(),
                    import_id=import_id,
                )
                self.user_repository.commit()
            except SQLAlchemyError as e:
                # create() has already rolled the row back
                formatted = self.error_service.handle_account_creation_error(
                    e, row.member_id, phone_number=row.phone_number, email=row.email
                )
                # A unique violation the pre-check missed is still a duplicate
                status = 'skipped' if is_duplicate_code(formatted['code']) else 'failed'
                return self._row_error(row, import_id, admin_id, formatted, status=status)

            sms_error = self._send_initial_sms(member, temporary_password, admin_id)
            return {
                'status': 'created',
                'member': {
                    'id': member.id,
                    'member_id': member.member_id,
                    'name': member.full_name,
                    'phone_number': member.phone_number,
                    'email': member.email if member.has_real_email else None,
                    'row_number': row.row_number,
                    'activation_status': member.activation_status,
                    'sms_sent': sms_error is None,
                    'sms_error': sms_error,
                },
            }
        except Exception as e:
            logger.exception("Unexpected error importing row", row_number=row.row_number, member_id=row.member_id)
            self.session.rollback()
            formatted = format_error(ErrorCode.UNKNOWN_ERROR, {'member_id': row.member_id, 'reason': str(e)})
            return self._row_error(row, import_id, admin_id, formatted, status='failed')

    def _find_duplicate(self, row: MemberRow) -> Optional[Dict[str, Any]]:
        """Cross-batch duplicate check against persisted accounts"""
        details = {'member_id': row.member_id, 'phone_number': row.phone_number, 'email': row.email}
        if self.user_repository.find_by_member_id(row.member_id):
            return format_error(ErrorCode.DUPLICATE_MEMBER_ID, details)
        if self.user_repository.find_by_phone_number(row.phone_number):
            return format_error(ErrorCode.DUPLICATE_PHONE_NUMBER, details)
        if row.email and self.user_repository.find_by_email(row.email):
            return format_error(ErrorCode.DUPLICATE_EMAIL, details)
        return None

    def _send_initial_sms(self, member, temporary_password: str, admin_id: Optional[int]) -> Optional[str]:
        """
        Returns:
            None when the SMS went out, otherwise the failure message
        """
        try:
            result = self.notification_service.send_sms_and_log(member.member_id, admin_id, temporary_password)
            self.session.commit()
            return None if result.is_success else result.error
        except Exception as e:
            # The account exists; a dispatch crash only fails the SMS
            logger.error("SMS dispatch crashed", member_id=member.member_id, error=str(e))
            self.session.rollback()
            formatted = self.error_service.handle_notification_error(e, 'sms', member.member_id)
            self.error_service.log_error(admin_id, formatted, {'member_id': member.member_id})
            self.error_service.mark_member_notification_failed(member, 'sms')
            self.session.commit()
            return formatted['message']

    def _row_error(self, row: MemberRow, import_id: int, admin_id: Optional[int],
                   formatted: Dict[str, Any], status: str, audit: bool = True) -> Dict[str, Any]:
        self.error_service.record_import_error(import_id, formatted, row_number=row.row_number,
                                               member_id=row.member_id)
        if audit:
            self.error_service.log_error(admin_id, formatted,
                                         {'member_id': row.member_id, 'row_number': row.row_number})
        self.session.commit()
        logger.info("Row not imported", row_number=row.row_number, code=formatted['code'], outcome=status)
        return {
            'status': status,
            'error': {
                'row_number': row.row_number,
                'member_id': row.member_id,
                'error_code': formatted['code'],
                'error_message': formatted['message'],
            },
        }

    def _finalize(self, import_id: int, stats: Dict[str, int], admin_id: Optional[int]):
        import_operation = self.import_operation_repository.get_by_id(import_id)
        try:
            self.import_operation_repository.finalize(
                import_operation,
                successful_imports=stats['successful_imports'],
                failed_imports=stats['failed_imports'],
                skipped_rows=stats['skipped_rows'],
                status=ImportStatus.COMPLETED,
            )
            self.import_operation_repository.commit()
        except SQLAlchemyError as e:
            formatted = format_error(ErrorCode.IMPORT_OPERATION_ERROR, {'reason': str(e)})
            self.error_service.log_error(admin_id, formatted, {'import_id': import_id})
            self.session.commit()
            logger.error("Import operation not finalized", import_id=import_id, error=str(e))
            import_operation = self.import_operation_repository.get_by_id(import_id)
        return import_operation
