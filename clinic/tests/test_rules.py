from unittest import mock

import pytest
from django.db import DatabaseError

from clinic.models import BusinessRule
from clinic.services.rules import (
    DEFAULT_RULES,
    MalformedCondition,
    check_condition,
    get_nested_value,
    rules_engine,
    validate_condition,
)

pytestmark = pytest.mark.django_db

CONTEXT = {
    'patient': {'is_first_visit': False, 'has_national_id': True},
    'payment': {'paid': 1, 'amount': 200.0},
    'session': {'type': 'therapy'},
}


def make_rule(name, *, condition, action='block', rule_type='payment_required', priority=0,
              applies_to=('all',), center=None, message=''):
    return BusinessRule.objects.create(
        name=name, rule_type=rule_type, condition=condition, action=action, priority=priority,
        applies_to=list(applies_to), center=center, error_message=message,
    )


def test_nested_lookup():
    assert get_nested_value(CONTEXT, 'payment.amount') == 200.0
    assert get_nested_value(CONTEXT, 'payment.amount.cents') is None
    assert get_nested_value(CONTEXT, 'insurance.approved') is None


def test_equals_is_strict_about_booleans():
    assert check_condition({'field': 'payment.paid', 'equals': 1}, CONTEXT)
    assert not check_condition({'field': 'payment.paid', 'equals': True}, CONTEXT)
    assert check_condition({'field': 'payment.paid', 'not_equals': True}, CONTEXT)
    assert not check_condition({'field': 'session.type', 'in': [True, 'consultation']}, CONTEXT)


def test_operators():
    assert check_condition({'field': 'session.type', 'in': ['consultation', 'therapy']}, CONTEXT)
    assert not check_condition({'field': 'session.type', 'not_in': ['therapy']}, CONTEXT)
    assert check_condition({'field': 'insurance.approved', 'exists': False}, CONTEXT)
    assert not check_condition({'field': 'insurance.approved', 'exists': True}, CONTEXT)
    # only the first operator counts
    assert check_condition({'field': 'session.type', 'equals': 'therapy', 'not_equals': 'therapy'}, CONTEXT)


def test_and_or():
    both = {'and': [{'field': 'patient.has_national_id', 'equals': True},
                    {'field': 'patient.is_first_visit', 'equals': True}]}
    either = {'or': both['and']}
    assert not check_condition(both, CONTEXT)
    assert check_condition(either, CONTEXT)
    assert check_condition({'and': []}, CONTEXT)
    assert not check_condition({'or': []}, CONTEXT)


def test_empty_or_operatorless_conditions_hold():
    assert check_condition({}, CONTEXT)
    assert check_condition(None, CONTEXT)
    assert check_condition({'field': 'payment.paid'}, CONTEXT)


def test_malformed_conditions():
    with pytest.raises(MalformedCondition):
        check_condition({'and': {'field': 'x'}}, CONTEXT)
    with pytest.raises(MalformedCondition):
        check_condition({'field': '', 'equals': 1}, CONTEXT)
    with pytest.raises(MalformedCondition):
        validate_condition({'or': [{'and': 'nope'}]})
    validate_condition({'or': [{'field': 'a', 'equals': 1}]})


def test_evaluate_orders_by_priority_and_reports_failures():
    make_rule('low', condition={'field': 'payment.paid', 'equals': True}, priority=1,
              message='Payment required')
    make_rule('high', condition={'field': 'patient.has_national_id', 'equals': True}, priority=50,
              action='warn')
    results = rules_engine.evaluate(CONTEXT, role='reception')
    assert [r.rule_name for r in results] == ['high', 'low']
    assert results[0].passed
    assert not results[1].passed
    assert results[1].message == 'Payment required'


def test_failed_rule_without_message_gets_default():
    make_rule('Needs payment', condition={'field': 'payment.paid', 'equals': True,
                                          'required_fields': ['payment']})
    result = rules_engine.evaluate(CONTEXT)[0]
    assert result.message == 'Rule violation: Needs payment'
    assert result.required_fields == ['payment']


def test_role_and_center_filtering(center, other_center):
    make_rule('doctors only', condition={'field': 'x', 'exists': True}, applies_to=['doctor'])
    make_rule('other center', condition={'field': 'x', 'exists': True}, center=other_center)
    make_rule('everyone here', condition={'field': 'x', 'exists': True}, center=center)
    names = [r.rule_name for r in rules_engine.evaluate(CONTEXT, role='reception', center_id=center.id)]
    assert names == ['everyone here']
    names = [r.rule_name for r in rules_engine.evaluate(CONTEXT, role='doctor', center_id=center.id)]
    assert sorted(names) == ['doctors only', 'everyone here']


def test_rule_type_filter():
    make_rule('pay', condition={}, rule_type='payment_required')
    make_rule('notes', condition={}, rule_type='session_data_complete')
    results = rules_engine.evaluate(CONTEXT, rule_types=['session_data_complete'])
    assert [r.rule_name for r in results] == ['notes']


def test_malformed_stored_rule_is_skipped():
    make_rule('broken', condition={'and': 'oops'}, priority=10)
    make_rule('fine', condition={'field': 'payment.paid', 'equals': 1})
    results = rules_engine.evaluate(CONTEXT)
    assert [r.rule_name for r in results] == ['fine']


def test_rules_are_cached_until_invalidated():
    make_rule('first', condition={})
    assert len(rules_engine.load_rules()) == 1
    make_rule('second', condition={})
    assert len(rules_engine.load_rules()) == 1
    rules_engine.invalidate()
    assert len(rules_engine.load_rules()) == 2


def test_inactive_rules_are_ignored():
    rule = make_rule('off', condition={})
    rule.is_active = False
    rule.save()
    assert rules_engine.load_rules() == []


def test_database_failure_falls_back_to_defaults():
    with mock.patch.object(BusinessRule.objects, 'filter', side_effect=DatabaseError('down')):
        rules = rules_engine.load_rules()
    assert [r['id'] for r in rules] == [r['id'] for r in DEFAULT_RULES]
    # the fallback is not cached
    assert rules_engine.load_rules() == []


def test_admin_creates_rule_and_cache_is_refreshed(api, admin):
    assert rules_engine.load_rules() == []
    response = api(admin).post('/api/admin/business-rules', {
        'name': 'National ID on file',
        'rule_type': 'payment_required',
        'condition': {'field': 'documents.national_id', 'equals': True, 'required_fields': ['national_id']},
        'action': 'block',
        'priority': 5,
        'applies_to': ['reception'],
        'error_message': 'National ID is required',
    }, format='json')
    assert response.status_code == 201
    assert response.data['data']['center_id'] == admin.center_id
    assert [r['name'] for r in rules_engine.load_rules()] == ['National ID on file']


def test_malformed_condition_is_rejected(api, admin):
    response = api(admin).post('/api/admin/business-rules', {
        'name': 'bad', 'rule_type': 'payment_required', 'action': 'block',
        'condition': {'or': {'field': 'a'}},
    }, format='json')
    assert response.status_code == 400
    assert 'condition' in response.data['details']


def test_center_admin_cannot_edit_global_rule(api, admin):
    rule = make_rule('global', condition={})
    client = api(admin)
    assert client.get(f'/api/admin/business-rules/{rule.id}').status_code == 200
    response = client.put(f'/api/admin/business-rules/{rule.id}', {'priority': 3}, format='json')
    assert response.status_code == 403
    assert client.delete(f'/api/admin/business-rules/{rule.id}').status_code == 403


def test_operator_updates_global_rule(api, make_user):
    operator = make_user('operator', 'admin', center=None)
    rule = make_rule('global', condition={}, priority=1)
    rules_engine.load_rules()
    response = api(operator).put(f'/api/admin/business-rules/{rule.id}', {'priority': 9}, format='json')
    assert response.status_code == 200
    assert rules_engine.load_rules()[0]['priority'] == 9


def test_evaluate_endpoint(api, admin):
    make_rule('must pay', condition={'field': 'payment.paid', 'equals': True}, message='Collect payment')
    make_rule('id please', condition={'field': 'patient.has_national_id', 'equals': True}, action='warn',
              message='Ask for national ID')
    response = api(admin).post('/api/admin/business-rules/evaluate', {
        'context': {'payment': {'paid': False}, 'patient': {'has_national_id': False}},
        'role': 'reception',
    }, format='json')
    assert response.status_code == 200
    data = response.data['data']
    assert data['canProceed'] is False
    assert data['errors'] == ['Collect payment']
    assert data['warnings'] == ['Ask for national ID']
    assert len(data['results']) == 2


def test_evaluate_stays_in_the_admins_center(api, admin, other_center):
    make_rule('jeddah only', condition={'field': 'payment.paid', 'equals': True}, center=other_center,
              message='Jeddah policy')
    response = api(admin).post('/api/admin/business-rules/evaluate', {
        'context': {}, 'center_id': other_center.id,
    }, format='json')
    assert response.status_code == 200
    assert response.data['data']['results'] == []
    assert response.data['data']['canProceed'] is True


def test_operator_evaluates_a_chosen_center(api, make_user, other_center):
    make_rule('jeddah only', condition={'field': 'payment.paid', 'equals': True}, center=other_center)
    operator = make_user('operator', 'admin', center=None)
    response = api(operator).post('/api/admin/business-rules/evaluate', {
        'context': {}, 'center_id': other_center.id,
    }, format='json')
    assert [r['rule_name'] for r in response.data['data']['results']] == ['jeddah only']


def test_rules_admin_requires_admin_role(api, reception):
    assert api(reception).get('/api/admin/business-rules').status_code == 403
