"""
Tests for RuleCompiler

Every rule tree is evaluated twice: as a SQL clause against SQLite through
ContactRepository, and as an in-memory predicate over the same contacts.
Both forms must select the same contacts.
"""

import pytest
from datetime import datetime, timezone

from extensions import db
from repositories.contact_repository import ContactRepository
from services.predicate_compiler import RuleCompiler, normalize_days, resolve_field
from services.exceptions import RuleParseError
from tests.conftest import TENANT_ID, OTHER_TENANT_ID, create_test_contact

FIXED_NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def rule(field, operator, value=None, **extra):
    data = {'field': field, 'operator': operator, 'value': value}
    data.update(extra)
    return data


def group(*rules, combinator='and'):
    return {'combinator': combinator, 'rules': list(rules)}


TOTAL_ORDERS_GT_1 = rule('ecommerceData.totalOrders', 'greater_than', 1)
TOTAL_SPENT_LT_300 = rule('ecommerceData.totalSpent', 'less_than', 300)
TOTAL_ORDERS_LT_1 = rule('ecommerceData.totalOrders', 'less_than', 1)


@pytest.fixture
def compiler():
    return RuleCompiler(clock=lambda: FIXED_NOW)


@pytest.fixture
def evaluate(app, compiler, contacts_with_orders):
    """Returns a function giving (sql names, in-memory names) for a rule tree"""
    repository = ContactRepository(db.session)

    def _evaluate(rules):
        compiled = compiler.compile(rules)
        sql = {c.name for c in repository.find_matching(TENANT_ID, compiled.clause)}
        memory = {c.name for c in contacts_with_orders if compiled.predicate(c)}
        return sql, memory

    return _evaluate


class TestPredicateCorrectness:
    """A single comparison selects exactly the contacts that satisfy it"""

    def test_greater_than_on_json_number(self, evaluate):
        sql, memory = evaluate(group(TOTAL_ORDERS_GT_1))

        assert sql == {'Buyer 2', 'Buyer 5'}
        assert memory == sql

    def test_equals_on_json_number(self, evaluate):
        sql, memory = evaluate(group(rule('ecommerceData.totalOrders', 'equals', 1)))

        assert sql == {'Buyer 1'}
        assert memory == sql

    def test_text_operators_are_case_insensitive(self, evaluate):
        contains_sql, contains_memory = evaluate(group(rule('name', 'contains', 'BUYER')))
        starts_sql, starts_memory = evaluate(group(rule('email', 'starts_with', 'Buyer5')))

        assert contains_sql == contains_memory == {'Buyer 0', 'Buyer 1', 'Buyer 2', 'Buyer 5'}
        assert starts_sql == starts_memory == {'Buyer 5'}

    def test_in_and_not_in(self, evaluate):
        in_sql, in_memory = evaluate(group(rule('ecommerceData.totalOrders', 'in', [0, 5])))
        not_in_sql, not_in_memory = evaluate(group(rule('ecommerceData.totalOrders', 'not_in', [0, 5])))

        assert in_sql == in_memory == {'Buyer 0', 'Buyer 5'}
        assert not_in_sql == not_in_memory == {'Buyer 1', 'Buyer 2'}

    def test_missing_json_key_never_satisfies_comparison(self, evaluate, db_session):
        db_session.add(create_test_contact(name='No Orders Data', ecommerce_data={}))
        db_session.commit()

        sql, _ = evaluate(group(rule('ecommerceData.totalOrders', 'less_than', 100)))

        assert 'No Orders Data' not in sql

    def test_results_are_tenant_scoped(self, app, compiler, db_session, contacts_with_orders):
        db_session.add(create_test_contact(tenant_id=OTHER_TENANT_ID, name='Other Buyer',
                                           ecommerce_data={'totalOrders': 9}))
        db_session.commit()
        repository = ContactRepository(db.session)

        matched = repository.find_matching(TENANT_ID, compiler.compile_filter(group(TOTAL_ORDERS_GT_1)))

        assert {c.name for c in matched} == {'Buyer 2', 'Buyer 5'}


class TestComparisonAcrossFieldKinds:
    """greater_than / less_than select the same contacts in SQL and in memory for every field kind"""

    @pytest.mark.parametrize('comparison', [
        rule('name', 'greater_than', 5),
        rule('name', 'less_than', 'Buyer 2'),
        rule('email', 'greater_than', 'buyer1@'),
        rule('id', 'greater_than', 1),
        rule('id', 'less_than', '3'),
        rule('ecommerceData.totalOrders', 'greater_than', 1),
        rule('ecommerceData.totalOrders', 'less_than', '2'),
        rule('createdAt', 'greater_than', '2000-01-01T00:00:00Z'),
        rule('createdAt', 'less_than', '2000-01-01T00:00:00Z'),
        rule('createdAt', 'greater_than', 5),
    ])
    def test_sql_and_memory_agree(self, evaluate, comparison):
        sql, memory = evaluate(group(comparison))

        assert sql == memory

    def test_text_field_compares_numeric_bound_lexically(self, evaluate):
        above_sql, above_memory = evaluate(group(rule('name', 'greater_than', 5)))
        below_sql, below_memory = evaluate(group(rule('name', 'less_than', 'Buyer 2')))

        assert above_sql == above_memory == {'Buyer 0', 'Buyer 1', 'Buyer 2', 'Buyer 5'}
        assert below_sql == below_memory == {'Buyer 0', 'Buyer 1'}

    def test_timestamp_bound_on_created_at(self, evaluate):
        sql, memory = evaluate(group(rule('createdAt', 'greater_than', '2000-01-01T00:00:00Z')))

        assert sql == memory == {'Buyer 0', 'Buyer 1', 'Buyer 2', 'Buyer 5'}

    @pytest.mark.parametrize('value', [5, '5', 'soon'])
    def test_non_timestamp_bound_on_created_at_is_skipped(self, compiler, evaluate, value):
        alone = group(rule('createdAt', 'greater_than', value))
        with_name = group(rule('name', 'contains', 'buyer'), rule('createdAt', 'greater_than', value))

        compiled = compiler.compile(alone)
        alone_sql, alone_memory = evaluate(alone)
        with_name_sql, with_name_memory = evaluate(with_name)

        assert [w.field for w in compiled.warnings] == ['createdAt']
        assert compiled.warnings[0].message == f"Not a timestamp: {value!r}"
        assert alone_sql == alone_memory == set()
        assert with_name_sql == with_name_memory == {'Buyer 0', 'Buyer 1', 'Buyer 2', 'Buyer 5'}


class TestCombinators:
    """AND is intersection and OR is union of the children's matches"""

    @pytest.mark.parametrize('left,right', [
        (TOTAL_ORDERS_GT_1, TOTAL_SPENT_LT_300),   # overlapping: {2,5} and {0,1,2}
        (TOTAL_ORDERS_GT_1, TOTAL_ORDERS_LT_1),    # disjoint: {2,5} and {0}
    ])
    def test_and_is_intersection_or_is_union(self, evaluate, left, right):
        left_sql, _ = evaluate(group(left))
        right_sql, _ = evaluate(group(right))

        and_sql, and_memory = evaluate(group(left, right, combinator='and'))
        or_sql, or_memory = evaluate(group(left, right, combinator='or'))

        assert and_sql == and_memory == left_sql & right_sql
        assert or_sql == or_memory == left_sql | right_sql

    def test_nested_groups(self, evaluate):
        tree = group(
            rule('name', 'contains', 'buyer'),
            group(TOTAL_ORDERS_LT_1, rule('ecommerceData.totalOrders', 'equals', 5), combinator='or'),
        )

        sql, memory = evaluate(tree)

        assert sql == memory == {'Buyer 0', 'Buyer 5'}

    def test_combinator_is_case_insensitive(self, evaluate):
        sql, _ = evaluate(group(TOTAL_ORDERS_GT_1, TOTAL_ORDERS_LT_1, combinator='OR'))

        assert sql == {'Buyer 0', 'Buyer 2', 'Buyer 5'}


class TestEmptyGroups:

    def test_empty_group_matches_every_contact(self, evaluate, compiler):
        sql, memory = evaluate(group())

        assert sql == memory == {'Buyer 0', 'Buyer 1', 'Buyer 2', 'Buyer 5'}
        assert compiler.compile(group()).matches_all is True

    def test_none_rules_match_every_contact(self, compiler):
        assert compiler.compile_filter(None) is None
        assert compiler.compile_predicate(None)(object()) is True

    def test_empty_nested_group_is_true_inside_and(self, evaluate):
        sql, _ = evaluate(group(TOTAL_ORDERS_GT_1, group()))

        assert sql == {'Buyer 2', 'Buyer 5'}


class TestUnknownOperators:
    """Unsupported operators are skipped with a warning and never widen a match"""

    def test_unknown_operator_alone_matches_nothing(self, evaluate, compiler):
        tree = group(rule('ecommerceData.totalOrders', 'regex', '.*'))

        sql, memory = evaluate(tree)
        compiled = compiler.compile(tree)

        assert sql == set()
        assert memory == set()
        assert compiled.matches_all is False
        assert compiled.warnings[0].message == 'Unknown operator: regex'

    def test_unknown_operator_is_dropped_from_its_group(self, evaluate, compiler):
        tree = group(TOTAL_ORDERS_GT_1, rule('name', 'sounds_like', 'x'))

        sql, memory = evaluate(tree)

        assert sql == memory == {'Buyer 2', 'Buyer 5'}
        assert len(compiler.compile(tree).warnings) == 1

    def test_reserved_operator_is_not_compiled(self, compiler):
        compiled = compiler.compile(group(rule('createdAt', 'between', ['2026-01-01', '2026-02-01'])))

        assert compiled.warnings[0].operator == 'between'

    def test_unknown_field_is_skipped(self, evaluate, compiler):
        tree = group(rule('favouriteColour', 'equals', 'blue'), TOTAL_ORDERS_GT_1)

        sql, _ = evaluate(tree)

        assert sql == {'Buyer 2', 'Buyer 5'}
        assert compiler.compile(tree).warnings[0].message == 'Unknown field: favouriteColour'

    def test_malformed_tree_raises(self, compiler):
        with pytest.raises(RuleParseError):
            compiler.compile({'combinator': 'xor', 'rules': []})
        with pytest.raises(RuleParseError):
            compiler.compile(group({'operator': 'equals', 'value': 1}))


class TestRelativeTime:

    @pytest.fixture
    def order_dates(self, db_session):
        contacts = [
            create_test_contact(name='Recent', ecommerce_data={'lastOrderDate': '2026-10-10T09:00:00'}),
            create_test_contact(name='Lapsed', ecommerce_data={'lastOrderDate': '2026-08-01T09:00:00'}),
        ]
        db_session.add_all(contacts)
        db_session.commit()
        return contacts

    def test_within_last_and_not_within_last_on_json_dates(self, app, compiler, order_dates):
        repository = ContactRepository(db.session)
        within = group(rule('ecommerceData.lastOrderDate', 'within_last', 30, valueUnit='days'))
        outside = group(rule('ecommerceData.lastOrderDate', 'not_within_last', 30, valueUnit='days'))

        within_names = {c.name for c in repository.find_matching(TENANT_ID, compiler.compile_filter(within))}
        outside_names = {c.name for c in repository.find_matching(TENANT_ID, compiler.compile_filter(outside))}

        assert within_names == {'Recent'}
        assert outside_names == {'Lapsed'}
        assert compiler.compile_predicate(within)(order_dates[0]) is True
        assert compiler.compile_predicate(outside)(order_dates[0]) is False

    def test_non_numeric_amount_is_skipped(self, compiler):
        compiled = compiler.compile(group(rule('createdAt', 'within_last', 'soon')))

        assert compiled.warnings
        assert compiled.predicate(create_test_contact()) is False


class TestHelpers:

    def test_resolve_field_applies_aliases(self):
        ref = resolve_field('stage')

        assert ref.attribute == 'lifecycle_stage'
        assert ref.is_json is False

    def test_resolve_field_json_path(self):
        ref = resolve_field('customFields.plan.tier')

        assert ref.attribute == 'custom_fields'
        assert ref.json_path == ('plan', 'tier')

    def test_resolve_field_rejects_path_into_scalar(self):
        assert resolve_field('name.first') is None

    @pytest.mark.parametrize('value,unit,expected', [
        (2, 'days', 2),
        (48, 'hours', 2),
        (1440, 'minutes', 1),
        ('3', None, 3),
    ])
    def test_normalize_days(self, value, unit, expected):
        assert normalize_days(value, unit) == expected
