"""
Predicate Compiler - turns a segment rule tree into contact filters

A parsed ``RuleGroup`` compiles to two equivalent forms:

- a SQLAlchemy boolean clause over the ``Contact`` model, used by repositories
  to select matching contacts in the database;
- an in-memory predicate ``(contact) -> bool`` that works on model instances
  or plain mappings already loaded in memory.

Segment membership, previews and single-contact checks all run the SQL
clause.

Both forms follow the same rules:

- A null field fails every operator except ``is_empty``, as SQL three-valued
  logic does.
- ``greater_than`` / ``less_than`` compare text fields lexically, and skip
  timestamp fields whose bound is not a timestamp.
- Unknown or reserved operators are skipped with a warning.
- A group whose children were all skipped is itself skipped.
- When nothing at the top level compiles, the segment matches nobody.
- An empty group matches everyone.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import String, and_, cast, false, func, or_, true

from services.segment_rules import (
    Combinator,
    NodeKind,
    Operator,
    Rule,
    RuleGroup,
    ValueUnit,
    parse_rule_group,
)
from utils.datetime_utils import ensure_utc, naive_utc, parse_utc_iso, utc_days_ago, utc_now

logger = logging.getLogger(__name__)

# Shorthand field names accepted from the segment builder
FIELD_ALIASES = {
    'lifecycle': 'lifecycleStage',
    'stage': 'lifecycleStage',
    'created': 'createdAt',
    'updated': 'updatedAt',
    'lastContacted': 'lastContactedAt',
}

# Top-level contact fields: public name -> (model attribute, kind)
CONTACT_FIELDS = {
    'id': ('id', 'number'),
    'name': ('name', 'text'),
    'email': ('email', 'text'),
    'phone': ('phone', 'text'),
    'tags': ('tags', 'json'),
    'lifecycleStage': ('lifecycle_stage', 'text'),
    'source': ('source', 'text'),
    'customFields': ('custom_fields', 'json'),
    'ecommerceData': ('ecommerce_data', 'json'),
    'createdAt': ('created_at', 'datetime'),
    'updatedAt': ('updated_at', 'datetime'),
    'lastContactedAt': ('last_contacted_at', 'datetime'),
}

_ATTRIBUTE_TO_NAME = {attribute: name for name, (attribute, _) in CONTACT_FIELDS.items()}

# Lexically comparable ISO layout for timestamps stored inside JSON documents
_JSON_TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%S'

# Sentinel: every condition in a group was skipped
_SKIPPED = object()


@dataclass(frozen=True)
class FieldRef:
    """A resolved rule field path"""
    path: str
    name: str
    attribute: str
    kind: str
    json_path: Tuple[str, ...] = ()

    @property
    def is_json(self) -> bool:
        return bool(self.json_path)


@dataclass(frozen=True)
class CompilationWarning:
    """A rule that was skipped while compiling"""
    field: str
    operator: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {'field': self.field, 'operator': self.operator, 'message': self.message}


@dataclass
class CompiledRules:
    """Both compiled forms of a rule tree plus the warnings raised on the way"""
    clause: Any
    predicate: Callable[[Any], bool]
    warnings: List[CompilationWarning] = field(default_factory=list)

    @property
    def matches_all(self) -> bool:
        return self.clause is None


def resolve_field(path: str) -> Optional[FieldRef]:
    """
    Resolve a dotted rule field path against the contact schema.

    Aliases are applied first. The first segment selects a contact attribute,
    and any remaining segments index into that attribute's JSON document.

    Args:
        path: Field path such as ``ecommerceData.totalOrders`` or ``stage``

    Returns:
        FieldRef, or None if the top-level attribute is unknown
    """
    resolved = FIELD_ALIASES.get(path, path)
    head, *rest = resolved.split('.')

    name = head if head in CONTACT_FIELDS else _ATTRIBUTE_TO_NAME.get(head)
    if name is None:
        return None

    attribute, kind = CONTACT_FIELDS[name]
    if rest and kind != 'json':
        return None

    return FieldRef(path=path, name=name, attribute=attribute, kind=kind, json_path=tuple(rest))


def normalize_days(value: Any, unit: Optional[str]) -> float:
    """
    Convert a relative time amount to days.

    Raises:
        ValueError: If the value is not numeric
    """
    amount = float(value)
    unit = (unit or ValueUnit.DAYS.value).lower()
    if unit == ValueUnit.HOURS.value:
        return amount / 24
    if unit == ValueUnit.MINUTES.value:
        return amount / 1440
    return amount


class RuleCompiler:
    """Compiles segment rule trees for a contact model"""

    def __init__(self, model=None, clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            model: Contact model class (defaults to crm_database.Contact)
            clock: Returns the current aware UTC time; injectable for tests
        """
        if model is None:
            from crm_database import Contact
            model = Contact
        self.model = model
        self.clock = clock or utc_now

    # Public API

    def compile(self, rules) -> CompiledRules:
        """
        Compile a rule group (parsed or raw JSON) into a clause and a predicate.

        Both forms share one reference time so ``within_last`` agrees.
        """
        group = parse_rule_group(rules)
        now = self.clock()
        warnings: List[CompilationWarning] = []

        clause = self._compile_group_clause(group, now, warnings)
        predicate = self._compile_group_predicate(group, now, [])

        if clause is _SKIPPED:
            logger.warning("No rule in segment could be compiled; segment matches no contacts")
            clause = false()
        if predicate is _SKIPPED:
            predicate = _never
        elif predicate is None:
            predicate = _always

        return CompiledRules(clause=clause, predicate=predicate, warnings=warnings)

    def compile_filter(self, rules):
        """Compile to a SQLAlchemy clause, or None when no filter applies"""
        return self.compile(rules).clause

    def compile_predicate(self, rules) -> Callable[[Any], bool]:
        """Compile to an in-memory ``(contact) -> bool`` predicate"""
        return self.compile(rules).predicate

    # SQL clause form

    def _compile_group_clause(self, group: RuleGroup, now: datetime, warnings: List[CompilationWarning]):
        if group.is_empty:
            return None

        conditions = []
        for child in group.rules:
            if child.kind is NodeKind.GROUP:
                condition = self._compile_group_clause(child, now, warnings)
                if condition is _SKIPPED:
                    continue
                conditions.append(true() if condition is None else condition)
            else:
                condition = self._compile_rule_clause(child, now, warnings)
                if condition is not None:
                    conditions.append(condition)

        if not conditions:
            return _SKIPPED
        if len(conditions) == 1:
            return conditions[0]
        if group.combinator is Combinator.OR:
            return or_(*conditions)
        return and_(*conditions)

    def _compile_rule_clause(self, rule: Rule, now: datetime, warnings: List[CompilationWarning]):
        ref = self._check_rule(rule, warnings)
        if ref is None:
            return None

        operator = rule.normalized_operator
        column = getattr(self.model, ref.attribute)
        if ref.is_json:
            element = column[ref.json_path[0]] if len(ref.json_path) == 1 else column[ref.json_path]
            text_expr = element.as_string()
        else:
            element = None
            text_expr = column if ref.kind == 'text' else cast(column, String)

        if operator == Operator.EQUALS.value:
            return func.lower(text_expr) == _to_text(rule.value).lower()
        if operator == Operator.NOT_EQUALS.value:
            return func.lower(text_expr) != _to_text(rule.value).lower()
        if operator == Operator.CONTAINS.value:
            return text_expr.ilike(f"%{_escape_like(rule.value)}%", escape='\\')
        if operator == Operator.NOT_CONTAINS.value:
            return ~text_expr.ilike(f"%{_escape_like(rule.value)}%", escape='\\')
        if operator == Operator.STARTS_WITH.value:
            return text_expr.ilike(f"{_escape_like(rule.value)}%", escape='\\')

        if operator in (Operator.GREATER_THAN.value, Operator.LESS_THAN.value):
            bound = self._comparison_bound(rule, ref, warnings)
            if bound is None:
                return None
            mode, value = bound
            if mode == 'number':
                target = element.as_float() if element is not None else column
            elif mode == 'datetime':
                target, value = column, naive_utc(value)
            else:
                target = text_expr
            return target > value if operator == Operator.GREATER_THAN.value else target < value

        if operator in (Operator.IN.value, Operator.NOT_IN.value):
            values = [_to_text(v).lower() for v in _as_list(rule.value)]
            lowered = func.lower(text_expr)
            if operator == Operator.IN.value:
                return lowered.in_(values)
            return and_(text_expr.is_not(None), lowered.not_in(values))

        if operator == Operator.IS_EMPTY.value:
            return or_(text_expr.is_(None), text_expr == '')
        if operator == Operator.IS_NOT_EMPTY.value:
            return and_(text_expr.is_not(None), text_expr != '')

        # within_last / not_within_last
        threshold = self._threshold(rule, now, warnings)
        if threshold is None:
            return None
        if ref.is_json:
            target, bound = text_expr, threshold.strftime(_JSON_TIMESTAMP_FORMAT)
        else:
            target, bound = column, naive_utc(threshold)
        if operator == Operator.WITHIN_LAST.value:
            return target >= bound
        return target < bound

    # In-memory predicate form

    def _compile_group_predicate(self, group: RuleGroup, now: datetime, warnings: List[CompilationWarning]):
        if group.is_empty:
            return None

        predicates = []
        for child in group.rules:
            if child.kind is NodeKind.GROUP:
                predicate = self._compile_group_predicate(child, now, warnings)
                if predicate is _SKIPPED:
                    continue
                predicates.append(_always if predicate is None else predicate)
            else:
                predicate = self._compile_rule_predicate(child, now, warnings)
                if predicate is not None:
                    predicates.append(predicate)

        if not predicates:
            return _SKIPPED
        if group.combinator is Combinator.OR:
            return lambda contact: any(p(contact) for p in predicates)
        return lambda contact: all(p(contact) for p in predicates)

    def _compile_rule_predicate(self, rule: Rule, now: datetime, warnings: List[CompilationWarning]):
        ref = self._check_rule(rule, warnings, log=False)
        if ref is None:
            return None

        operator = rule.normalized_operator
        test = self._value_test(rule, ref, operator, now, warnings)
        if test is None:
            return None

        def predicate(contact) -> bool:
            value = get_field_value(contact, ref)
            if value is None:
                return operator == Operator.IS_EMPTY.value
            return test(value)

        return predicate

    def _value_test(self, rule: Rule, ref: FieldRef, operator: str, now: datetime,
                    warnings: List[CompilationWarning]) -> Optional[Callable[[Any], bool]]:
        expected = rule.value

        if operator == Operator.EQUALS.value:
            return lambda v: _to_text(v).lower() == _to_text(expected).lower()
        if operator == Operator.NOT_EQUALS.value:
            return lambda v: _to_text(v).lower() != _to_text(expected).lower()
        if operator == Operator.CONTAINS.value:
            return lambda v: _to_text(expected).lower() in _to_text(v).lower()
        if operator == Operator.NOT_CONTAINS.value:
            return lambda v: _to_text(expected).lower() not in _to_text(v).lower()
        if operator == Operator.STARTS_WITH.value:
            return lambda v: _to_text(v).lower().startswith(_to_text(expected).lower())

        if operator in (Operator.GREATER_THAN.value, Operator.LESS_THAN.value):
            greater = operator == Operator.GREATER_THAN.value
            bound = self._comparison_bound(rule, ref, warnings, log=False)
            if bound is None:
                return None
            mode, value = bound
            if mode == 'number':
                return lambda v: _compare(_as_number(v), value, greater)
            if mode == 'datetime':
                return lambda v: _compare(_as_datetime(v), value, greater)
            return lambda v: _compare(_to_text(v), value, greater)

        if operator in (Operator.IN.value, Operator.NOT_IN.value):
            values = {_to_text(item).lower() for item in _as_list(expected)}
            if operator == Operator.IN.value:
                return lambda v: _to_text(v).lower() in values
            return lambda v: _to_text(v).lower() not in values

        if operator == Operator.IS_EMPTY.value:
            return lambda v: _to_text(v) == ''
        if operator == Operator.IS_NOT_EMPTY.value:
            return lambda v: _to_text(v) != ''

        threshold = self._threshold(rule, now, warnings, log=False)
        if threshold is None:
            return None
        if ref.is_json:
            # Stored JSON timestamps compare as ISO text, as in the database
            bound_text = threshold.strftime(_JSON_TIMESTAMP_FORMAT)
            if operator == Operator.WITHIN_LAST.value:
                return lambda v: _to_text(v) >= bound_text
            return lambda v: _to_text(v) < bound_text
        if operator == Operator.WITHIN_LAST.value:
            return lambda v: _compare_at_least(_as_datetime(v), threshold)
        return lambda v: _compare(_as_datetime(v), threshold, greater=False)

    # Shared checks

    def _check_rule(self, rule: Rule, warnings: List[CompilationWarning], log: bool = True) -> Optional[FieldRef]:
        if not rule.is_supported:
            self._warn(rule, f"Unknown operator: {rule.normalized_operator}", warnings, log)
            return None

        ref = resolve_field(rule.field)
        if ref is None:
            self._warn(rule, f"Unknown field: {rule.field}", warnings, log)
        return ref

    def _comparison_bound(self, rule: Rule, ref: FieldRef, warnings: List[CompilationWarning],
                          log: bool = True) -> Optional[Tuple[str, Any]]:
        """
        Pick how greater_than / less_than compare for a field.

        Numbers compare numerically on numeric and JSON fields, timestamp
        fields need a timestamp bound, and text fields compare lexically.
        Returns None, with a warning, when a timestamp field gets a bound
        that is not a timestamp.
        """
        number = _as_number(rule.value)
        if ref.kind == 'datetime':
            moment = _as_datetime(rule.value) if number is None else None
            if moment is None:
                self._warn(rule, f"Not a timestamp: {rule.value!r}", warnings, log)
                return None
            return 'datetime', moment
        if number is not None and ref.kind in ('number', 'json'):
            return 'number', number
        return 'text', _to_text(rule.value)

    def _threshold(self, rule: Rule, now: datetime, warnings: List[CompilationWarning],
                   log: bool = True) -> Optional[datetime]:
        try:
            days = normalize_days(rule.value, rule.value_unit)
        except (TypeError, ValueError):
            self._warn(rule, f"Relative time value is not numeric: {rule.value!r}", warnings, log)
            return None
        return utc_days_ago(days, now=now)

    @staticmethod
    def _warn(rule: Rule, message: str, warnings: List[CompilationWarning], log: bool) -> None:
        warnings.append(CompilationWarning(field=rule.field, operator=rule.operator, message=message))
        if log:
            logger.warning(f"Skipping segment rule on '{rule.field}': {message}")


def get_field_value(contact: Any, ref: FieldRef) -> Any:
    """Read a resolved field from a model instance or a mapping"""
    if isinstance(contact, Mapping):
        value = contact.get(ref.name, contact.get(ref.attribute))
    else:
        value = getattr(contact, ref.attribute, None)

    for key in ref.json_path:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def _always(contact) -> bool:
    return True


def _never(contact) -> bool:
    return False


def _to_text(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if isinstance(value, datetime):
        return value.isoformat(sep=' ')
    return str(value)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return ensure_utc(datetime(value.year, value.month, value.day))
    if isinstance(value, str) and value:
        try:
            return parse_utc_iso(value)
        except ValueError:
            return None
    return None


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple, set)) else [value]


def _escape_like(value: Any) -> str:
    return _to_text(value).replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def _compare(left, right, greater: bool) -> bool:
    if left is None or right is None:
        return False
    return left > right if greater else left < right


def _compare_at_least(left, right) -> bool:
    if left is None or right is None:
        return False
    return left >= right
