"""
SegmentService - compiles segment rules and materializes membership

Dynamic segments are always evaluated fresh against the contact store and
their cached count is informational. Static segments snapshot their member
ids on each explicit recalculation and serve from that snapshot until the
next one.
"""

import time
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from repositories.contact_repository import ContactRepository
from repositories.segment_repository import SegmentRepository
from services.common.result import ErrorCode, Result
from services.enums import SegmentType
from services.exceptions import NotFoundError, RuleParseError
from services.predicate_compiler import RuleCompiler
from services.segment_rules import parse_rule_group
from logging_config import performance_logger
from utils.datetime_utils import naive_utc
import logging

logger = logging.getLogger(__name__)


SYSTEM_SEGMENTS = [
    {
        'name': 'All Contacts',
        'description': 'All contacts in the system',
        'rules': {'combinator': 'and', 'rules': []},
    },
    {
        'name': 'New Customers',
        'description': 'Customers with their first order',
        'rules': {'combinator': 'and', 'rules': [
            {'id': 'r1', 'field': 'ecommerceData.totalOrders', 'operator': 'equals', 'value': 1},
        ]},
    },
    {
        'name': 'Repeat Customers',
        'description': 'Customers with 2+ orders',
        'rules': {'combinator': 'and', 'rules': [
            {'id': 'r1', 'field': 'ecommerceData.totalOrders', 'operator': 'greater_than', 'value': 1},
        ]},
    },
    {
        'name': 'VIP Customers',
        'description': 'High value customers (more than 10,000 total spent)',
        'rules': {'combinator': 'and', 'rules': [
            {'id': 'r1', 'field': 'ecommerceData.totalSpent', 'operator': 'greater_than', 'value': 10000},
        ]},
    },
    {
        'name': 'Inactive (30 Days)',
        'description': 'No orders in last 30 days',
        'rules': {'combinator': 'and', 'rules': [
            {'id': 'r1', 'field': 'ecommerceData.lastOrderDate', 'operator': 'not_within_last',
             'value': 30, 'valueUnit': 'days'},
        ]},
    },
]

_UPDATABLE_FIELDS = ('name', 'description', 'type', 'rules')


class SegmentService:
    """Service for segment CRUD and membership evaluation"""

    def __init__(self,
                 segment_repository: SegmentRepository,
                 contact_repository: ContactRepository,
                 rule_compiler: Optional[RuleCompiler] = None,
                 preview_limit: int = 20):
        """
        Args:
            segment_repository: Segment data access
            contact_repository: Contact store the rules are evaluated against
            rule_compiler: Compiler for rule trees
            preview_limit: Default sample size for previews
        """
        self.segment_repository = segment_repository
        self.contact_repository = contact_repository
        self.rule_compiler = rule_compiler or RuleCompiler()
        self.preview_limit = preview_limit

    # CRUD

    def create(self, tenant_id: str, data: Dict[str, Any]) -> Result:
        """
        Create a segment and compute its initial membership.

        A failure while counting is logged and does not fail the creation.

        Args:
            tenant_id: Owning tenant
            data: name, description, type and rules

        Returns:
            Result with the created Segment
        """
        name = (data.get('name') or '').strip()
        if not name:
            return Result.failure("Segment name is required", code=ErrorCode.VALIDATION_ERROR)

        try:
            segment_type = SegmentType(data.get('type') or SegmentType.DYNAMIC.value)
            rules = parse_rule_group(data.get('rules')).to_dict()
        except (ValueError, RuleParseError) as e:
            return Result.failure(str(e), code=ErrorCode.VALIDATION_ERROR)

        try:
            segment = self.segment_repository.create(
                tenant_id=tenant_id,
                name=name,
                description=data.get('description'),
                type=segment_type.value,
                rules=rules,
                contact_ids=[],
                contact_count=0,
            )
            self.segment_repository.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to create segment '{name}': {e}")
            return Result.failure(f"Failed to create segment: {e}", code=ErrorCode.INTERNAL_ERROR)

        try:
            self.recalculate(segment.id)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to calculate initial count for segment {segment.id}: {e}")

        logger.info(f"Created segment {segment.id} - {name}")
        return Result.success(segment)

    def find_all(self, tenant_id: str) -> Result:
        return Result.success(self.segment_repository.find_by_tenant(tenant_id))

    def find_by_id(self, tenant_id: str, segment_id: int) -> Result:
        segment = self.segment_repository.get_for_tenant(tenant_id, segment_id)
        if segment is None:
            return Result.failure(f"Segment {segment_id} not found", code=ErrorCode.NOT_FOUND)
        return Result.success(segment)

    def update(self, tenant_id: str, segment_id: int, updates: Dict[str, Any]) -> Result:
        """
        Update a segment. Changing the rules triggers a recalculation.

        Returns:
            Result with the updated Segment
        """
        segment = self.segment_repository.get_for_tenant(tenant_id, segment_id)
        if segment is None:
            return Result.failure(f"Segment {segment_id} not found", code=ErrorCode.NOT_FOUND)

        changes = {key: updates[key] for key in _UPDATABLE_FIELDS if key in updates}
        try:
            if 'rules' in changes:
                changes['rules'] = parse_rule_group(changes['rules']).to_dict()
            if 'type' in changes:
                changes['type'] = SegmentType(changes['type']).value
        except (ValueError, RuleParseError) as e:
            return Result.failure(str(e), code=ErrorCode.VALIDATION_ERROR)

        rules_changed = 'rules' in changes and changes['rules'] != segment.rules

        try:
            self.segment_repository.update(segment, **changes)
            self.segment_repository.commit()
        except StaleDataError:
            return Result.failure(f"Segment {segment_id} was modified concurrently", code=ErrorCode.CONFLICT)
        except SQLAlchemyError as e:
            logger.error(f"Failed to update segment {segment_id}: {e}")
            return Result.failure(f"Failed to update segment: {e}", code=ErrorCode.INTERNAL_ERROR)

        if rules_changed:
            self.recalculate(segment.id)

        return Result.success(segment)

    def delete(self, tenant_id: str, segment_id: int) -> Result:
        segment = self.segment_repository.get_for_tenant(tenant_id, segment_id)
        if segment is None:
            return Result.failure(f"Segment {segment_id} not found", code=ErrorCode.NOT_FOUND)
        if segment.is_system:
            return Result.failure("Cannot delete system segment", code=ErrorCode.SYSTEM_SEGMENT)

        try:
            self.segment_repository.delete(segment)
            self.segment_repository.commit()
        except SQLAlchemyError as e:
            return Result.failure(f"Failed to delete segment: {e}", code=ErrorCode.INTERNAL_ERROR)

        logger.info(f"Deleted segment {segment_id}")
        return Result.success(True)

    # Membership

    def recalculate(self, segment_id: int) -> int:
        """
        Re-run a segment's rules against its tenant's contacts.

        Updates contact_count and last_calculated_at. Static segments also
        snapshot the matching ids.

        Args:
            segment_id: Segment ID

        Returns:
            Number of matching contacts, or 0 if the segment does not exist

        Raises:
            SQLAlchemyError: If the membership query or the save fails
        """
        segment = self.segment_repository.get_by_id(segment_id)
        if segment is None:
            return 0

        started = time.perf_counter()
        clause = self.rule_compiler.compile_filter(segment.rules)
        changes: Dict[str, Any] = {'last_calculated_at': naive_utc()}

        if segment.type == SegmentType.STATIC.value:
            ids = self.contact_repository.find_matching_ids(segment.tenant_id, clause)
            changes['contact_ids'] = ids
            changes['contact_count'] = len(ids)
        else:
            changes['contact_count'] = self.contact_repository.count_matching(segment.tenant_id, clause)

        self.segment_repository.update(segment, **changes)
        self.segment_repository.commit()

        performance_logger.log_segment_evaluation(
            segment_id, round((time.perf_counter() - started) * 1000, 2), changes['contact_count']
        )
        logger.info(f"Recalculated segment {segment.name} ({segment_id}): {changes['contact_count']} contacts")
        return changes['contact_count']

    def recalculate_for_tenant(self, tenant_id: str, segment_id: int) -> Result:
        """Tenant-checked recalculation for the HTTP layer"""
        segment = self.segment_repository.get_for_tenant(tenant_id, segment_id)
        if segment is None:
            return Result.failure(f"Segment {segment_id} not found", code=ErrorCode.NOT_FOUND)
        try:
            return Result.success(self.recalculate(segment_id))
        except StaleDataError:
            return Result.failure(f"Segment {segment_id} was modified concurrently", code=ErrorCode.CONFLICT)

    def _get_segment(self, tenant_id: str, segment_id: int):
        segment = self.segment_repository.get_for_tenant(tenant_id, segment_id)
        if segment is None:
            raise NotFoundError('Segment', segment_id)
        return segment

    def _uses_snapshot(self, segment) -> bool:
        return segment.type == SegmentType.STATIC.value and bool(segment.contact_ids)

    def get_members(self, tenant_id: str, segment_id: int) -> List[Any]:
        """
        Contacts currently in a segment.

        Raises:
            NotFoundError: If the segment does not exist for the tenant
        """
        segment = self._get_segment(tenant_id, segment_id)
        if self._uses_snapshot(segment):
            return self.contact_repository.find_by_ids(tenant_id, segment.contact_ids)
        clause = self.rule_compiler.compile_filter(segment.rules)
        return self.contact_repository.find_matching(tenant_id, clause)

    def get_contact_ids(self, tenant_id: str, segment_id: int) -> List[int]:
        """
        Ids of the contacts currently in a segment.

        Raises:
            NotFoundError: If the segment does not exist for the tenant
        """
        segment = self._get_segment(tenant_id, segment_id)
        if self._uses_snapshot(segment):
            return [contact.id for contact in self.contact_repository.find_by_ids(tenant_id, segment.contact_ids)]
        clause = self.rule_compiler.compile_filter(segment.rules)
        return self.contact_repository.find_matching_ids(tenant_id, clause)

    def contact_matches(self, tenant_id: str, contact_id: int, segment_id: int) -> bool:
        """
        Check whether one contact is in a segment.

        Static segments answer from their snapshot; dynamic ones evaluate the
        rules for that contact only.

        Raises:
            NotFoundError: If the segment does not exist for the tenant
        """
        segment = self._get_segment(tenant_id, segment_id)
        if segment.type == SegmentType.STATIC.value:
            return contact_id in (segment.contact_ids or [])
        clause = self.rule_compiler.compile_filter(segment.rules)
        return self.contact_repository.contact_matches(tenant_id, contact_id, clause)

    def preview(self, tenant_id: str, rules: Any, limit: Optional[int] = None) -> Result:
        """
        Evaluate an unsaved rule tree.

        Returns:
            Result with count, a sample of matching contacts and any
            compiler warnings
        """
        try:
            compiled = self.rule_compiler.compile(rules)
        except RuleParseError as e:
            return Result.failure(str(e), code=ErrorCode.VALIDATION_ERROR)

        sample = self.contact_repository.find_matching(tenant_id, compiled.clause, limit=limit or self.preview_limit)
        return Result.success({
            'count': self.contact_repository.count_matching(tenant_id, compiled.clause),
            'sample': sample,
            'warnings': [warning.to_dict() for warning in compiled.warnings],
        })

    def create_system_segments(self, tenant_id: str) -> Result:
        """
        Seed the built-in segments for a tenant. Existing ones are left alone.

        Returns:
            Result with the list of segments that were created
        """
        created = []
        for definition in SYSTEM_SEGMENTS:
            if self.segment_repository.find_by_name(tenant_id, definition['name']) is not None:
                continue

            segment = self.segment_repository.create(
                tenant_id=tenant_id,
                name=definition['name'],
                description=definition['description'],
                type=SegmentType.DYNAMIC.value,
                rules=definition['rules'],
                contact_ids=[],
                contact_count=0,
                is_system=True,
            )
            created.append(segment)

        self.segment_repository.commit()
        for segment in created:
            try:
                self.recalculate(segment.id)
            except SQLAlchemyError as e:
                logger.warning(f"Failed to calculate initial count for segment {segment.id}: {e}")

        logger.info(f"Created {len(created)} system segments for tenant {tenant_id}")
        return Result.success(created)
