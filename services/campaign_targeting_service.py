"""
CampaignTargetingService - resolves a campaign's targeting into recipients
"""

from typing import Any, Dict, Iterable, List, Optional

from services.exceptions import NotFoundError
from services.segment_service import SegmentService
import logging

logger = logging.getLogger(__name__)


class CampaignTargetingService:
    """Combines segment membership and explicit contact lists"""

    def __init__(self, segment_service: SegmentService):
        self.segment_service = segment_service

    def resolve_recipients(self, campaign) -> List[int]:
        """
        Resolve the ordered, de-duplicated recipient ids for a campaign.

        Segment members are taken in segment order, then explicit contact
        ids are appended. Duplicates keep their first position. Members of
        excluded segments and explicitly excluded contacts are removed last.

        Args:
            campaign: Campaign with a ``targeting`` document and ``tenant_id``

        Returns:
            List of contact ids
        """
        targeting: Dict[str, Any] = campaign.targeting or {}
        tenant_id = campaign.tenant_id

        included: Dict[int, None] = {}
        for contact_id in self._segment_members(tenant_id, targeting.get('segmentIds')):
            included.setdefault(contact_id, None)
        for contact_id in targeting.get('contactIds') or []:
            included.setdefault(contact_id, None)

        excluded = set(self._segment_members(tenant_id, targeting.get('excludeSegmentIds')))
        excluded.update(targeting.get('excludeContactIds') or [])

        recipients = [contact_id for contact_id in included if contact_id not in excluded]
        logger.info(f"Resolved {len(recipients)} recipients for campaign {campaign.id} "
                    f"({len(included) - len(recipients)} excluded)")
        return recipients

    def _segment_members(self, tenant_id: str, segment_ids: Optional[Iterable[int]]) -> List[int]:
        members: List[int] = []
        for segment_id in segment_ids or []:
            try:
                members.extend(self.segment_service.get_contact_ids(tenant_id, segment_id))
            except NotFoundError:
                logger.warning(f"Targeted segment {segment_id} not found for tenant {tenant_id}; skipping")
        return members
