"""
ImportOperationRepository - Data access layer for bulk import records
Counters and the error list are changed with single UPDATE/INSERT statements,
never read-modify-write of the whole record
"""

from typing import List, Optional
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from repositories.base_repository import BaseRepository, PaginationParams, PaginatedResult, SortOrder
from coop_database import ImportOperation, ImportOperationError
from services.enums import ImportStatus
from utils.datetime_utils import utc_now
import logging

logger = logging.getLogger(__name__)

COUNTER_FIELDS = frozenset({
    'successful_imports', 'failed_imports', 'skipped_rows',
    'sms_sent_count', 'sms_failed_count', 'email_sent_count', 'email_failed_count',
})


class ImportOperationRepository(BaseRepository[ImportOperation]):
    """Repository for ImportOperation data access"""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, ImportOperation)

    def search(self, query: str, fields: Optional[List[str]] = None) -> List[ImportOperation]:
        """
        Search imports by file name or admin name.

        Args:
            query: Search query string
            fields: Specific fields to search (default: csv_file_name, admin_name)
        """
        if not query:
            return []

        try:
            search_fields = fields or ['csv_file_name', 'admin_name']
            conditions = [
                getattr(ImportOperation, field).ilike(f'%{query}%')
                for field in search_fields if hasattr(ImportOperation, field)
            ]
            if not conditions:
                return []
            return self.session.query(ImportOperation).filter(or_(*conditions)).all()
        except SQLAlchemyError as e:
            logger.error(f"Error searching import operations: {e}")
            return []

    def create_pending(self, csv_file_name: str, admin_id: Optional[int], admin_name: Optional[str],
                       total_rows: int) -> ImportOperation:
        """Create the record that row processing will report into"""
        return self.create(
            csv_file_name=csv_file_name,
            admin_id=admin_id,
            admin_name=admin_name,
            total_rows=total_rows,
            status=ImportStatus.PENDING.value,
        )

    def increment_counters(self, import_id: int, **deltas: int) -> int:
        """
        Atomically add to one or more counters.

        Raises:
            ValueError: If a field is not a counter
        """
        unknown = set(deltas) - COUNTER_FIELDS
        if unknown:
            raise ValueError(f"Not an import counter: {', '.join(sorted(unknown))}")
        return self.increment(import_id, **deltas)

    def append_error(self, import_id: int, error_code: str, error_message: str,
                     row_number: Optional[int] = None, member_id: Optional[str] = None) -> ImportOperationError:
        """Append one entry to the import's ordered error list"""
        try:
            entry = ImportOperationError(
                import_id=import_id,
                row_number=row_number,
                member_id=member_id,
                error_code=error_code,
                error_message=error_message,
            )
            self.session.add(entry)
            self.session.flush()
            return entry
        except SQLAlchemyError as e:
            # No rollback here: callers append inside their own SAVEPOINT
            logger.error(f"Error appending error to import {import_id}: {e}")
            raise

    def get_errors(self, import_id: int) -> List[ImportOperationError]:
        try:
            return (
                self.session.query(ImportOperationError)
                .filter(ImportOperationError.import_id == import_id)
                .order_by(ImportOperationError.id.asc())
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"Error loading errors for import {import_id}: {e}")
            return []

    def finalize(self, import_operation: ImportOperation, successful_imports: int, failed_imports: int,
                 skipped_rows: int, status: ImportStatus = ImportStatus.COMPLETED) -> ImportOperation:
        """Write the row outcome totals and close the operation"""
        return self.update(
            import_operation,
            successful_imports=successful_imports,
            failed_imports=failed_imports,
            skipped_rows=skipped_rows,
            status=ImportStatus(status).value,
            completed_at=utc_now(),
        )

    def get_history(self, pagination: PaginationParams,
                    status: Optional[str] = None) -> PaginatedResult[ImportOperation]:
        """Newest first"""
        filters = {'status': status} if status else None
        return self.get_paginated(pagination, filters=filters, order_by='created_at', order=SortOrder.DESC)
