"""
SegmentRepository - Data access layer for Segment entities
"""

from typing import List, Optional
from sqlalchemy.exc import SQLAlchemyError
from repositories.base_repository import BaseRepository
from crm_database import Segment
import logging

logger = logging.getLogger(__name__)


class SegmentRepository(BaseRepository[Segment]):
    """Repository for Segment data access"""

    def __init__(self, session):
        super().__init__(session, Segment)

    def find_by_tenant(self, tenant_id: str) -> List[Segment]:
        """All segments of a tenant ordered by name"""
        try:
            return (self.session.query(Segment)
                    .filter(Segment.tenant_id == tenant_id)
                    .order_by(Segment.name)
                    .all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing segments for tenant {tenant_id}: {e}")
            return []

    def find_by_name(self, tenant_id: str, name: str) -> Optional[Segment]:
        return self.find_one_by(tenant_id=tenant_id, name=name)
