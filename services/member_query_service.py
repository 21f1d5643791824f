"""
MemberQueryService - read-only queries behind the import dashboard
"""

from typing import Optional, Dict, Any, List
from repositories.base_repository import PaginationParams, SortOrder
from repositories.import_operation_repository import ImportOperationRepository
from repositories.user_repository import UserRepository
from services.common.result import Result, PagedResult
from services.enums import ActivationStatus
from services.import_error_service import ErrorCode, format_error
from utils.data_masking import mask_member_record


class MemberQueryService:
    """List views are masked, detail views are not"""

    def __init__(self, user_repository: UserRepository, import_operation_repository: ImportOperationRepository):
        self.user_repository = user_repository
        self.import_operation_repository = import_operation_repository

    def get_imported_members(self,
                             status: Optional[str] = None,
                             search: Optional[str] = None,
                             sort_by: str = 'created_at',
                             sort_order: Optional[str] = 'desc',
                             page: int = 1,
                             per_page: int = 20,
                             import_id: Optional[int] = None) -> PagedResult[List[Dict[str, Any]]]:
        if status:
            try:
                status = ActivationStatus(status).value
            except ValueError:
                return PagedResult(success=False, error=f'Invalid activation status "{status}"',
                                   error_code='INVALID_ACTIVATION_STATUS',
                                   metadata={'allowed': [s.value for s in ActivationStatus]})

        pagination = PaginationParams(page=page, per_page=per_page)
        result = self.user_repository.find_imported_members(
            pagination,
            status=status,
            search=search,
            import_id=import_id,
            sort_by=sort_by,
            sort_order=SortOrder.parse(sort_order),
        )
        items = [mask_member_record(member.to_list_item()) for member in result.items]
        return PagedResult.paginated(items, total=result.total, page=result.page, per_page=result.per_page,
                                     metadata={'status_counts': self.user_repository.count_by_status(import_id)})

    def get_member_detail(self, member_id: str) -> Result[Dict[str, Any]]:
        member = self.user_repository.find_by_member_id(member_id)
        if member is None:
            return Result.from_error(format_error(ErrorCode.MEMBER_NOT_FOUND, {'member_id': member_id}))
        return Result.success(member.to_dict())

    def get_import_history(self, page: int = 1, per_page: int = 20,
                           status: Optional[str] = None) -> PagedResult[List[Dict[str, Any]]]:
        result = self.import_operation_repository.get_history(PaginationParams(page=page, per_page=per_page),
                                                              status=status)
        items = [operation.to_dict(include_errors=False) for operation in result.items]
        return PagedResult.paginated(items, total=result.total, page=result.page, per_page=result.per_page)

    def get_import_details(self, import_id: int) -> Result[Dict[str, Any]]:
        import_operation = self.import_operation_repository.get_by_id(import_id)
        if import_operation is None:
            return Result.from_error(format_error(ErrorCode.IMPORT_NOT_FOUND, {'import_id': import_id}))
        data = import_operation.to_dict(include_errors=True)
        data['member_status_counts'] = self.user_repository.count_by_status(import_id)
        return Result.success(data)

    def get_import_members(self, import_id: int, status: Optional[str] = None, page: int = 1,
                           per_page: int = 20) -> PagedResult[List[Dict[str, Any]]]:
        if self.import_operation_repository.get_by_id(import_id) is None:
            formatted = format_error(ErrorCode.IMPORT_NOT_FOUND, {'import_id': import_id})
            return PagedResult(success=False, error=formatted['message'], error_code=formatted['code'],
                               metadata=formatted['details'])
        return self.get_imported_members(status=status, page=page, per_page=per_page, import_id=import_id,
                                         sort_by='created_at', sort_order='asc')
