"""
AuditLogService - fire-and-forget sink for the activity audit trail

Writing an audit record must never fail the operation being audited. Each
record is written inside its own SAVEPOINT so a failed insert only discards
the audit row; the failure is reported to the structured log instead.
"""

from typing import Optional, Dict, Any, Union
from sqlalchemy.exc import SQLAlchemyError
from repositories.activity_repository import ActivityRepository
from services.enums import ActivityAction
from logging_config import get_logger

logger = get_logger(__name__)


class AuditLogService:
    """Append-only audit sink"""

    def __init__(self, activity_repository: ActivityRepository):
        self.activity_repository = activity_repository

    def record(self,
               actor_id: Optional[int],
               action: Union[ActivityAction, str],
               description: str,
               metadata: Optional[Dict[str, Any]] = None) -> bool:
        """
        Append one audit record.

        Returns:
            True if the record was written, False if it was dropped
        """
        action_tag = action.value if isinstance(action, ActivityAction) else str(action)
        session = self.activity_repository.session
        try:
            with session.begin_nested():
                activity = self.activity_repository.model_class(
                    actor_id=actor_id,
                    action=action_tag,
                    description=description,
                    activity_metadata=metadata or {},
                )
                session.add(activity)
            return True
        except SQLAlchemyError as e:
            logger.warning("Audit record dropped", action=action_tag, actor_id=actor_id, error=str(e))
            return False
        except Exception as e:
            logger.error("Audit sink failure", action=action_tag, actor_id=actor_id, error=str(e))
            return False
