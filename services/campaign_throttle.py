"""
Campaign throttling and A/B variant selection

Throttling spreads sends out by giving each recipient a queue delay based on
its position in the recipient list. No process ever sleeps; the delay is
handed to the job queue.
"""

import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Sequence

from utils.datetime_utils import ensure_utc, utc_to_local
import logging

logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60_000
MS_PER_HOUR = 3_600_000


@dataclass(frozen=True)
class SendingWindow:
    """Local hours during which a campaign would like to send"""
    start_hour: int
    end_hour: int
    timezone: str = 'UTC'

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['SendingWindow']:
        if not data:
            return None
        return cls(
            start_hour=int(data.get('startHour', 0)),
            end_hour=int(data.get('endHour', 24)),
            timezone=data.get('timezone') or 'UTC',
        )

    def contains(self, moment: datetime) -> bool:
        """
        Check whether a moment falls inside the window in its local time.

        Windows that wrap midnight (``startHour`` > ``endHour``) are handled.
        """
        local_hour = utc_to_local(ensure_utc(moment), self.timezone).hour
        if self.start_hour <= self.end_hour:
            return self.start_hour <= local_hour < self.end_hour
        return local_hour >= self.start_hour or local_hour < self.end_hour


@dataclass(frozen=True)
class ThrottleConfig:
    """Parsed ``campaign.throttle`` document"""
    enabled: bool = False
    messages_per_minute: Optional[float] = None
    messages_per_hour: Optional[float] = None
    sending_window: Optional[SendingWindow] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ThrottleConfig':
        if not data:
            return cls()
        return cls(
            enabled=bool(data.get('enabled')),
            messages_per_minute=_positive(data.get('messagesPerMinute')),
            messages_per_hour=_positive(data.get('messagesPerHour')),
            sending_window=SendingWindow.from_dict(data.get('sendingWindow')),
        )


def _positive(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def delay_for_index(throttle: Any, index: int) -> float:
    """
    Queue delay in milliseconds for the recipient at ``index``.

    A per-minute rate wins over a per-hour rate. Disabled or rate-less
    throttles send everything immediately.

    Args:
        throttle: ThrottleConfig or raw ``campaign.throttle`` document
        index: Zero-based position in the recipient list

    Returns:
        Delay in milliseconds
    """
    config = throttle if isinstance(throttle, ThrottleConfig) else ThrottleConfig.from_dict(throttle)
    if not config.enabled:
        return 0
    if config.messages_per_minute:
        return index * MS_PER_MINUTE / config.messages_per_minute
    if config.messages_per_hour:
        return index * MS_PER_HOUR / config.messages_per_hour
    return 0


class CampaignThrottle:
    """Per-campaign view of the throttle settings"""

    def delay_for(self, campaign, index: int) -> float:
        return delay_for_index(campaign.throttle, index)

    def sending_window(self, campaign) -> Optional[SendingWindow]:
        # Parsed for diagnostics only; delays do not honour the window
        return ThrottleConfig.from_dict(campaign.throttle).sending_window


class VariantSelector:
    """
    Weighted random choice of an A/B variant.

    A draw in [0, 100) walks the cumulative percentages and picks the first
    variant whose cumulative share reaches it. Draws past the total, which
    happen when percentages sum below 100, fall back to the first variant.
    """

    def __init__(self, rng: Optional[Callable[[], float]] = None):
        """
        Args:
            rng: Returns a float in [0, 1); injectable for tests
        """
        self.rng = rng or random.random

    def select(self, variants: Sequence[Any]):
        if not variants:
            return None
        return self.select_for_draw(variants, self.rng() * 100)

    @staticmethod
    def select_for_draw(variants: Sequence[Any], draw: float):
        if not variants:
            return None
        cumulative = 0.0
        for variant in variants:
            cumulative += float(variant.percentage or 0)
            if draw <= cumulative:
                return variant
        return variants[0]

    @staticmethod
    def check_percentages(variants: Sequence[Any], campaign_id=None) -> float:
        """Log a warning when variant percentages do not add up to 100"""
        total = sum(float(variant.percentage or 0) for variant in variants)
        if variants and abs(total - 100) > 1e-6:
            logger.warning(f"Variant percentages for campaign {campaign_id} sum to {total}, not 100")
        return total
