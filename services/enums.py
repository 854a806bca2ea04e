"""
Service layer enums
These enums are used by services and should match the values stored in the
database, but allow services to work without importing database models
"""

from enum import Enum

from services.exceptions import InvalidStateError


class SegmentType(str, Enum):
    """How segment membership is determined"""
    STATIC = 'static'
    DYNAMIC = 'dynamic'


class CampaignStatus(str, Enum):
    """Campaign lifecycle states"""
    DRAFT = 'draft'
    SCHEDULED = 'scheduled'
    RUNNING = 'running'
    PAUSED = 'paused'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self) -> bool:
        return self in (CampaignStatus.COMPLETED, CampaignStatus.CANCELLED)


class CampaignType(str, Enum):
    """Kinds of campaign"""
    WHATSAPP_TEMPLATE = 'whatsapp_template'
    EMAIL = 'email'
    SMS = 'sms'
    MULTI_CHANNEL = 'multi_channel'


class CampaignChannel(str, Enum):
    """Delivery channel for a campaign execution"""
    WHATSAPP = 'whatsapp'
    EMAIL = 'email'
    SMS = 'sms'


class ScheduleType(str, Enum):
    """Whether a campaign was scheduled for later or started right away"""
    IMMEDIATE = 'immediate'
    SCHEDULED = 'scheduled'


class AbTestWinnerMetric(str, Enum):
    """Metric used to pick the winning A/B variant"""
    OPEN_RATE = 'open_rate'
    CLICK_RATE = 'click_rate'
    CONVERSION_RATE = 'conversion_rate'
    REPLY_RATE = 'reply_rate'


class ExecutionStatus(str, Enum):
    """
    Per-recipient delivery states.

    Progress states are ordered; FAILED and BOUNCED are absorbing terminals.
    """
    PENDING = 'pending'
    QUEUED = 'queued'
    SENT = 'sent'
    DELIVERED = 'delivered'
    OPENED = 'opened'
    CLICKED = 'clicked'
    REPLIED = 'replied'
    FAILED = 'failed'
    BOUNCED = 'bounced'

    @property
    def is_terminal_failure(self) -> bool:
        return self in (ExecutionStatus.FAILED, ExecutionStatus.BOUNCED)


# Ordering of the forward-only progress states
EXECUTION_PROGRESS_ORDER = [
    ExecutionStatus.PENDING,
    ExecutionStatus.QUEUED,
    ExecutionStatus.SENT,
    ExecutionStatus.DELIVERED,
    ExecutionStatus.OPENED,
    ExecutionStatus.CLICKED,
    ExecutionStatus.REPLIED,
]

# States that count as still in flight for the completion sweep
IN_FLIGHT_EXECUTION_STATUSES = [ExecutionStatus.PENDING, ExecutionStatus.QUEUED]


def can_transition_execution(current: str, target: str) -> bool:
    """
    Check whether an execution may move from ``current`` to ``target``.

    Progress states only move forward. FAILED is reachable from PENDING or
    QUEUED, BOUNCED from PENDING, QUEUED or SENT. Nothing leaves a terminal
    failure state.
    """
    current_status = ExecutionStatus(current)
    target_status = ExecutionStatus(target)

    if current_status.is_terminal_failure:
        return False
    if target_status == ExecutionStatus.FAILED:
        return current_status in (ExecutionStatus.PENDING, ExecutionStatus.QUEUED)
    if target_status == ExecutionStatus.BOUNCED:
        return current_status in (ExecutionStatus.PENDING, ExecutionStatus.QUEUED, ExecutionStatus.SENT)

    return EXECUTION_PROGRESS_ORDER.index(target_status) > EXECUTION_PROGRESS_ORDER.index(current_status)


def ensure_execution_transition(current: str, target: str) -> None:
    """Raise InvalidStateError unless ``current`` may move to ``target``"""
    if not can_transition_execution(current, target):
        raise InvalidStateError(f"Cannot move execution from {current} to {target}")
