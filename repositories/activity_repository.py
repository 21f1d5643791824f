"""
ActivityRepository - Data access layer for the audit trail
"""

from typing import List, Optional
from sqlalchemy import desc, or_
from repositories.base_repository import BaseRepository
from coop_database import Activity


class ActivityRepository(BaseRepository[Activity]):
    """Repository for Activity data access. Records are only ever inserted."""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, Activity)

    def search(self, query: str, fields: Optional[List[str]] = None) -> List[Activity]:
        if not query:
            return []
        search_fields = fields or ['description', 'action']
        conditions = [getattr(Activity, f).ilike(f'%{query}%') for f in search_fields if hasattr(Activity, f)]
        return self.session.query(Activity).filter(or_(*conditions)).order_by(desc(Activity.created_at)).all()

    def find_by_action(self, action: str, limit: int = 50) -> List[Activity]:
        """
        Most recent activities with a given action tag.

        Args:
            action: Action tag, e.g. 'SMS_SENT'
            limit: Maximum number of results

        Returns:
            List of Activity objects ordered newest first
        """
        return self.session.query(self.model_class)\
            .filter_by(action=action)\
            .order_by(desc(self.model_class.id))\
            .limit(limit)\
            .all()

    def find_by_actor(self, actor_id: int, limit: int = 50) -> List[Activity]:
        return self.session.query(self.model_class)\
            .filter_by(actor_id=actor_id)\
            .order_by(desc(self.model_class.id))\
            .limit(limit)\
            .all()
