"""
Segment rule tree model.

Stored rules are JSON documents such as::

    {"combinator": "and", "rules": [
        {"field": "ecommerceData.totalOrders", "operator": "greater_than", "value": 1},
        {"combinator": "or", "rules": [...]}
    ]}

They are parsed once into a tagged tree of ``Rule`` and ``RuleGroup`` nodes so
the compiler never has to probe dictionaries for a ``combinator`` key.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from services.exceptions import RuleParseError


class NodeKind(str, Enum):
    """Discriminator for rule tree nodes"""
    RULE = 'rule'
    GROUP = 'group'


class Combinator(str, Enum):
    """How the children of a group are combined"""
    AND = 'and'
    OR = 'or'


class Operator(str, Enum):
    """Rule operators understood by the segment builder UI"""
    EQUALS = 'equals'
    NOT_EQUALS = 'not_equals'
    CONTAINS = 'contains'
    NOT_CONTAINS = 'not_contains'
    STARTS_WITH = 'starts_with'
    GREATER_THAN = 'greater_than'
    LESS_THAN = 'less_than'
    IN = 'in'
    NOT_IN = 'not_in'
    IS_EMPTY = 'is_empty'
    IS_NOT_EMPTY = 'is_not_empty'
    WITHIN_LAST = 'within_last'
    NOT_WITHIN_LAST = 'not_within_last'
    # Reserved by the UI but never compiled
    ENDS_WITH = 'ends_with'
    GTE = 'gte'
    LTE = 'lte'
    BETWEEN = 'between'
    BEFORE = 'before'
    AFTER = 'after'
    ON = 'on'


SUPPORTED_OPERATORS = frozenset({
    Operator.EQUALS, Operator.NOT_EQUALS,
    Operator.CONTAINS, Operator.NOT_CONTAINS, Operator.STARTS_WITH,
    Operator.GREATER_THAN, Operator.LESS_THAN,
    Operator.IN, Operator.NOT_IN,
    Operator.IS_EMPTY, Operator.IS_NOT_EMPTY,
    Operator.WITHIN_LAST, Operator.NOT_WITHIN_LAST,
})


class ValueUnit(str, Enum):
    """Units accepted by the time-relative operators"""
    DAYS = 'days'
    HOURS = 'hours'
    MINUTES = 'minutes'


@dataclass(frozen=True)
class Rule:
    """A leaf predicate: ``field operator value``"""
    field: str
    operator: str
    value: Any = None
    value_unit: Optional[str] = None
    id: Optional[str] = None

    kind = NodeKind.RULE

    @property
    def normalized_operator(self) -> str:
        return (self.operator or '').strip().lower()

    @property
    def is_supported(self) -> bool:
        return self.normalized_operator in {op.value for op in SUPPORTED_OPERATORS}

    def to_dict(self) -> Dict[str, Any]:
        data = {'field': self.field, 'operator': self.operator, 'value': self.value}
        if self.value_unit:
            data['valueUnit'] = self.value_unit
        if self.id:
            data['id'] = self.id
        return data


@dataclass(frozen=True)
class RuleGroup:
    """An ordered, homogeneous AND/OR group of rules and nested groups"""
    combinator: Combinator = Combinator.AND
    rules: List['RuleNode'] = field(default_factory=list)

    kind = NodeKind.GROUP

    @property
    def is_empty(self) -> bool:
        return not self.rules

    def to_dict(self) -> Dict[str, Any]:
        return {
            'combinator': self.combinator.value,
            'rules': [child.to_dict() for child in self.rules],
        }


RuleNode = Union[Rule, RuleGroup]


def parse_rule_group(data: Optional[Dict[str, Any]]) -> RuleGroup:
    """
    Parse a stored rule document into a ``RuleGroup``.

    ``None`` or ``{}`` parse to an empty AND group, which matches everyone.

    Args:
        data: Rule group document

    Returns:
        Parsed RuleGroup

    Raises:
        RuleParseError: If the document is structurally malformed
    """
    if data is None:
        return RuleGroup()
    if isinstance(data, RuleGroup):
        return data
    if not isinstance(data, dict):
        raise RuleParseError(f"Rule group must be an object, got {type(data).__name__}")

    raw_combinator = str(data.get('combinator') or 'and').strip().lower()
    try:
        combinator = Combinator(raw_combinator)
    except ValueError:
        raise RuleParseError(f"Unknown combinator: {data.get('combinator')}")

    children = data.get('rules') or []
    if not isinstance(children, list):
        raise RuleParseError("Rule group 'rules' must be a list")

    return RuleGroup(combinator=combinator, rules=[_parse_node(child) for child in children])


def _parse_node(data: Any) -> RuleNode:
    if not isinstance(data, dict):
        raise RuleParseError(f"Rule must be an object, got {type(data).__name__}")

    # Groups are recognised by their combinator key
    if 'combinator' in data:
        return parse_rule_group(data)

    field_path = data.get('field')
    if not field_path or not isinstance(field_path, str):
        raise RuleParseError("Rule is missing a field")

    operator = data.get('operator')
    if not isinstance(operator, str):
        raise RuleParseError(f"Rule on '{field_path}' is missing an operator")

    return Rule(
        field=field_path,
        operator=operator,
        value=data.get('value'),
        value_unit=data.get('valueUnit') or data.get('value_unit'),
        id=data.get('id'),
    )
