"""
CampaignExecutionRepository - Data access layer for per-recipient executions
"""

from typing import List, Optional, Dict, Any, Set
from sqlalchemy import func, case
from sqlalchemy.exc import SQLAlchemyError
from repositories.base_repository import (
    BaseRepository,
    PaginationParams,
    PaginatedResult,
    SortOrder,
)
from crm_database import CampaignExecution
from services.enums import ExecutionStatus, IN_FLIGHT_EXECUTION_STATUSES
import logging

logger = logging.getLogger(__name__)


class CampaignExecutionRepository(BaseRepository[CampaignExecution]):
    """Repository for CampaignExecution data access"""

    def __init__(self, session):
        super().__init__(session, CampaignExecution)

    def get_contact_ids_for_campaign(self, campaign_id: int) -> Set[int]:
        """Contacts that already have an execution row for the campaign"""
        try:
            rows = (self.session.query(CampaignExecution.contact_id)
                    .filter(CampaignExecution.campaign_id == campaign_id)
                    .all())
            return {row[0] for row in rows}
        except SQLAlchemyError as e:
            logger.error(f"Error loading execution contacts for campaign {campaign_id}: {e}")
            return set()

    def count_in_flight(self, campaign_id: int) -> int:
        """
        Count executions still pending or queued.

        Raises:
            SQLAlchemyError: The completion sweep must not treat an error as zero
        """
        return (self.session.query(CampaignExecution)
                .filter(CampaignExecution.campaign_id == campaign_id,
                        CampaignExecution.status.in_([s.value for s in IN_FLIGHT_EXECUTION_STATUSES]))
                .count())

    def get_paginated_for_campaign(self,
                                   campaign_id: int,
                                   pagination: PaginationParams,
                                   status: Optional[str] = None) -> PaginatedResult[CampaignExecution]:
        """
        Page through a campaign's executions, newest first.

        Args:
            campaign_id: Campaign ID
            pagination: Pagination parameters
            status: Optional status filter
        """
        filters: Dict[str, Any] = {'campaign_id': campaign_id}
        if status:
            filters['status'] = status
        return self.paginate(self._build_query(filters), pagination,
                             order_by='created_at', order=SortOrder.DESC)

    def aggregate_stats(self, campaign_id: int, variant_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Aggregate execution rows into campaign stats.

        A milestone counts when its timestamp is set, so an execution that
        was delivered and later bounced still counts as sent.

        Args:
            campaign_id: Campaign ID
            variant_id: Restrict to one A/B variant when given

        Returns:
            Stats dictionary in the stored camelCase shape

        Raises:
            SQLAlchemyError: Stats are persisted from this result, so errors propagate
        """
        e = CampaignExecution
        query = self.session.query(
            func.count(e.id),
            func.count(e.sent_at),
            func.count(e.delivered_at),
            func.count(e.opened_at),
            func.count(e.clicked_at),
            func.count(e.replied_at),
            func.coalesce(func.sum(case((e.status == ExecutionStatus.FAILED.value, 1), else_=0)), 0),
            func.coalesce(func.sum(case((e.converted.is_(True), 1), else_=0)), 0),
            func.coalesce(func.sum(e.conversion_value), 0),
        ).filter(e.campaign_id == campaign_id)
        if variant_id is not None:
            query = query.filter(e.variant_id == variant_id)

        (targeted, sent, delivered, opened, clicked, replied,
         failed, converted, conversion_value) = query.one()

        return {
            'totalTargeted': int(targeted),
            'totalSent': int(sent),
            'totalDelivered': int(delivered),
            'totalFailed': int(failed),
            'totalOpened': int(opened),
            'totalClicked': int(clicked),
            'totalReplied': int(replied),
            'totalConverted': int(converted),
            'conversionValue': float(conversion_value or 0),
        }
