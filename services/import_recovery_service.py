"""
ImportRecoveryService - recovery queries and retry of failed imports
"""

from typing import Optional, Dict, Any
from sqlalchemy.exc import SQLAlchemyError
from repositories.import_operation_repository import ImportOperationRepository
from repositories.user_repository import UserRepository
from services.audit_log_service import AuditLogService
from services.common.result import Result
from services.enums import ActivationStatus, ActivityAction, ImportStatus
from services.import_error_service import ImportErrorService, ErrorCode, format_error
from services.notification_service import NotificationService
from services.temporary_password_service import TemporaryPasswordService
from logging_config import get_logger

logger = get_logger(__name__)

FAILED_STATUSES = (ActivationStatus.SMS_FAILED, ActivationStatus.EMAIL_FAILED)
RETRYABLE_STATUSES = FAILED_STATUSES + (ActivationStatus.PENDING_ACTIVATION,)


class ImportRecoveryService:
    """Answers "what survived this import" and re-runs delivery for what did not"""

    def __init__(self,
                 import_operation_repository: ImportOperationRepository,
                 user_repository: UserRepository,
                 audit_log: AuditLogService,
                 error_service: ImportErrorService,
                 password_service: TemporaryPasswordService,
                 notification_service: NotificationService):
        self.import_operation_repository = import_operation_repository
        self.user_repository = user_repository
        self.audit_log = audit_log
        self.error_service = error_service
        self.password_service = password_service
        self.notification_service = notification_service

    @property
    def session(self):
        return self.import_operation_repository.session

    def get_partial_import_recovery(self, import_id: int) -> Result[Dict[str, Any]]:
        """Members of the import that have moved past pending_activation"""
        import_operation = self.import_operation_repository.get_by_id(import_id)
        if import_operation is None:
            return Result.from_error(format_error(ErrorCode.IMPORT_NOT_FOUND, {'import_id': import_id}))

        progressed = self.user_repository.find_by_import(
            import_id, exclude_statuses=[ActivationStatus.PENDING_ACTIVATION]
        )
        return Result.success({
            'import_id': import_id,
            'status': import_operation.status,
            'total_successful': import_operation.successful_imports,
            'total_failed': import_operation.failed_imports,
            'total_skipped': import_operation.skipped_rows,
            'successful_members': [
                {
                    'member_id': member.member_id,
                    'full_name': member.full_name,
                    'phone_number': member.phone_number,
                    'activation_status': member.activation_status,
                }
                for member in progressed
            ],
            'message': f'Found {len(progressed)} successfully imported members',
        })

    def validate_recovery_possible(self, import_id: int) -> Dict[str, Any]:
        """
        Returns:
            {can_recover, reason, data}
        """
        import_operation = self.import_operation_repository.get_by_id(import_id)
        if import_operation is None:
            return {'can_recover': False, 'reason': 'Import operation not found', 'data': None}

        failed_members = sum(
            count for status, count in self.user_repository.count_by_status(import_id).items()
            if status in {s.value for s in FAILED_STATUSES}
        )
        data = {
            'failed_members_count': failed_members,
            'failed_imports': import_operation.failed_imports,
            'import_status': import_operation.status,
        }
        if (import_operation.status == ImportStatus.COMPLETED.value
                and failed_members == 0 and not import_operation.failed_imports):
            return {'can_recover': False, 'reason': 'Import operation already completed without failures',
                    'data': data}
        return {'can_recover': True, 'reason': 'Import can be retried', 'data': data}

    def retry_failed_import(self, import_id: int, actor_id: Optional[int],
                            actor_name: Optional[str] = None) -> Result[Dict[str, Any]]:
        """
        Resend fresh credentials by SMS to every member of the import that has
        not activated, tracked by a new "(Retry)" import operation. The original
        operation is left untouched.
        """
        original = self.import_operation_repository.get_by_id(import_id)
        if original is None:
            return Result.from_error(format_error(ErrorCode.IMPORT_NOT_FOUND, {'import_id': import_id}))

        check = self.validate_recovery_possible(import_id)
        if not check['can_recover']:
            return Result.from_error(
                format_error(ErrorCode.RECOVERY_NOT_POSSIBLE, {'import_id': import_id, 'reason': check['reason']})
            )

        members = self.user_repository.find_by_import(import_id, statuses=RETRYABLE_STATUSES)
        try:
            retry_operation = self.import_operation_repository.create_pending(
                csv_file_name=f"{original.csv_file_name} (Retry)",
                admin_id=actor_id,
                admin_name=actor_name,
                total_rows=len(members),
            )
            self.import_operation_repository.commit()
        except SQLAlchemyError as e:
            formatted = format_error(ErrorCode.IMPORT_OPERATION_ERROR, {'reason': str(e)})
            self.error_service.log_error(actor_id, formatted, {'import_id': import_id})
            self.session.commit()
            return Result.from_error(formatted)

        retry_id = retry_operation.id
        successful = failed = 0
        details = []
        for member in members:
            member_id = member.member_id
            try:
                password = self.password_service.generate()
                self.user_repository.update(
                    member,
                    temporary_password_hash=self.password_service.hash(password),
                    temporary_password_expires=self.password_service.new_expiry(),
                    activation_token_hash=None,
                )
                self.session.commit()

                sent = self.notification_service.send_sms_and_log(
                    member_id, actor_id, password, counter_import_id=retry_id
                )
                if sent.is_success:
                    self.user_repository.restore_pending(member)
                    successful += 1
                    details.append({'member_id': member_id, 'success': True})
                else:
                    failed += 1
                    self.error_service.record_import_error(retry_id, {
                        'code': sent.error_code, 'message': sent.error
                    }, member_id=member_id)
                    details.append({'member_id': member_id, 'success': False, 'message': sent.error,
                                    'code': sent.error_code})
                self.session.commit()
            except SQLAlchemyError as e:
                self.session.rollback()
                failed += 1
                formatted = self.error_service.handle_database_error(e, 'import retry')
                self.error_service.record_import_error(retry_id, formatted, member_id=member_id)
                self.session.commit()
                details.append({'member_id': member_id, 'success': False, 'message': formatted['message'],
                                'code': formatted['code']})

        retry_operation = self.import_operation_repository.get_by_id(retry_id)
        self.import_operation_repository.finalize(
            retry_operation, successful_imports=successful, failed_imports=failed, skipped_rows=0
        )
        self.audit_log.record(
            actor_id,
            ActivityAction.IMPORT_RETRY,
            f'Retried import {import_id}: {successful} members re-sent, {failed} failed',
            {'original_import_id': import_id, 'retry_import_id': retry_id,
             'total': len(members), 'successful': successful, 'failed': failed},
        )
        self.session.commit()
        logger.info("Import retry completed", original_import_id=import_id, retry_import_id=retry_id,
                    successful=successful, failed=failed)

        return Result.success({
            'import_operation': retry_operation.to_dict(),
            'original_import_id': import_id,
            'statistics': {'total': len(members), 'successful': successful, 'failed': failed},
            'details': details,
        })
