from delivery_checks import (
    validate_assignments, summarize,
    INVALID_USER, INACTIVE_USER, MISSING_USER, MISMATCH, HIGH, MEDIUM, LOW,
)
from models import Order, User, DISPATCH_PENDING


def livreurs():
    return [
        User(id='d1', firstName='Paul', lastName='Leroy', email='paul@exemple.fr', role='delivery'),
        User(id='d2', firstName='Ana', lastName='Costa', email='ana@exemple.fr', role='delivery', isActive=False),
    ]


def ordine(user_id, user_name=''):
    return Order(id='o-' + str(user_id), orderReferenceId='CMD', deliveryUserId=user_id, deliveryUserName=user_name)


def test_valid_assignment_has_no_issue():
    assert validate_assignments([ordine('d1', 'Paul Leroy')], livreurs()) == []


def test_match_by_email():
    assert validate_assignments([ordine('paul@exemple.fr', 'Paul Leroy')], livreurs()) == []


def test_dispatch_pending_and_empty_are_skipped():
    assert validate_assignments([ordine(DISPATCH_PENDING), ordine(None), ordine('  ')], livreurs()) == []


def test_hardcoded_id():
    [problema] = validate_assignments([ordine('3', 'Test')], livreurs())
    assert problema.issueType == INVALID_USER
    assert problema.severity == HIGH


def test_unknown_email_and_id():
    problemi = validate_assignments([ordine('x@exemple.fr'), ordine('abc123')], livreurs())
    assert [p.issueType for p in problemi] == [MISSING_USER, MISSING_USER]
    assert 'email' in problemi[0].description


def test_inactive_user():
    [problema] = validate_assignments([ordine('d2', 'Ana Costa')], livreurs())
    assert problema.issueType == INACTIVE_USER
    assert problema.severity == MEDIUM


def test_name_mismatch():
    [problema] = validate_assignments([ordine('d1', 'P. Leroy')], livreurs())
    assert problema.issueType == MISMATCH
    assert problema.severity == LOW


def test_summarize():
    problemi = validate_assignments([ordine('1'), ordine('d2', 'X')], livreurs())
    assert summarize(problemi) == {HIGH: 1, MEDIUM: 1, LOW: 1, 'total': 3}
