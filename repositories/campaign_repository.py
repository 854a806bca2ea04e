"""
CampaignRepository - Data access layer for Campaign entities
Isolates all database queries related to campaigns and their variants
"""

from typing import List, Optional, Dict, Any
from datetime import datetime
from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from repositories.base_repository import BaseRepository
from crm_database import Campaign, CampaignVariant
from services.enums import CampaignStatus
import logging

logger = logging.getLogger(__name__)


class CampaignRepository(BaseRepository[Campaign]):
    """Repository for Campaign data access"""

    def __init__(self, session):
        super().__init__(session, Campaign)

    def find_by_tenant(self,
                       tenant_id: str,
                       status: Optional[str] = None,
                       campaign_type: Optional[str] = None) -> List[Campaign]:
        """
        List a tenant's campaigns, newest first.

        Args:
            tenant_id: Owning tenant
            status: Optional status filter
            campaign_type: Optional type filter
        """
        try:
            query = self.session.query(Campaign).filter(Campaign.tenant_id == tenant_id)
            if status:
                query = query.filter(Campaign.status == status)
            if campaign_type:
                query = query.filter(Campaign.type == campaign_type)
            return query.order_by(desc(Campaign.created_at), desc(Campaign.id)).all()
        except SQLAlchemyError as e:
            logger.error(f"Error listing campaigns for tenant {tenant_id}: {e}")
            return []

    def find_scheduled_campaigns_ready_to_run(self, current_time: datetime) -> List[Campaign]:
        """
        Find scheduled campaigns whose start time has passed.

        Args:
            current_time: Naive UTC time to check against
        """
        return self.session.query(Campaign).filter(
            Campaign.status == CampaignStatus.SCHEDULED.value,
            Campaign.scheduled_at <= current_time
        ).order_by(Campaign.scheduled_at, Campaign.id).all()

    def find_running_campaigns(self) -> List[Campaign]:
        return self.find_by(status=CampaignStatus.RUNNING.value)

    def add_variant(self, campaign: Campaign, data: Dict[str, Any]) -> CampaignVariant:
        """
        Attach an A/B variant to a campaign.

        Args:
            campaign: Owning campaign
            data: Variant fields (name, content, percentage)

        Raises:
            SQLAlchemyError: If database operation fails
        """
        try:
            variant = CampaignVariant(
                name=data.get('name') or f"Variant {len(campaign.variants) + 1}",
                content=dict(data.get('content') or {}),
                percentage=float(data.get('percentage') or 0),
            )
            campaign.variants.append(variant)
            self.session.flush()
            return variant
        except SQLAlchemyError as e:
            logger.error(f"Error adding variant to campaign {campaign.id}: {e}")
            self.session.rollback()
            raise

    def replace_variants(self, campaign: Campaign, variants: List[Dict[str, Any]]) -> List[CampaignVariant]:
        """Replace all variants of a campaign; orphans are deleted"""
        campaign.variants = []
        self.session.flush()
        return [self.add_variant(campaign, data) for data in variants]
