"""
Tests for execution status transitions
"""

import pytest

from services.enums import can_transition_execution, ensure_execution_transition
from services.exceptions import InvalidStateError


@pytest.mark.parametrize('current,target,allowed', [
    ('pending', 'queued', True),
    ('queued', 'sent', True),
    ('sent', 'delivered', True),
    ('sent', 'clicked', True),
    ('delivered', 'sent', False),
    ('clicked', 'opened', False),
    ('pending', 'failed', True),
    ('queued', 'failed', True),
    ('sent', 'failed', False),
    ('sent', 'bounced', True),
    ('delivered', 'bounced', False),
    ('failed', 'sent', False),
    ('bounced', 'delivered', False),
])
def test_can_transition_execution(current, target, allowed):
    assert can_transition_execution(current, target) is allowed


def test_ensure_execution_transition_raises_invalid_state():
    with pytest.raises(InvalidStateError, match="Cannot move execution from replied to queued") as exc_info:
        ensure_execution_transition('replied', 'queued')

    assert exc_info.value.code == 'INVALID_STATE'


def test_ensure_execution_transition_allows_forward_moves():
    ensure_execution_transition('queued', 'sent')
