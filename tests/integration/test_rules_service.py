"""Integration tests for detection rule set management"""

import uuid

import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy.orm import sessionmaker

from lifeadmin_gateway.domain.exceptions import ForbiddenError, NotFoundError, ValidationError
from lifeadmin_gateway.domain.models import Transaction
from lifeadmin_gateway.services.imports import ImportService
from lifeadmin_gateway.services.pipeline import ImportPipeline
from lifeadmin_gateway.services.rules import RuleSetService, ensure_default, load_snapshot
from lifeadmin_gateway.utils.money import from_pence

pytestmark = pytest.mark.integration


CAFE_RULES = {
    "name": "My rules",
    "category_rules": [
        {"name": "Cafe", "patterns": ["CORNER CAFE"], "category": "subscription", "subcategory": "coffee"},
    ],
    "settings": {"min_confidence_threshold": 0.4},
}


def cafe_transactions():
    return [
        Transaction(date=date(2024, 1, 20), description="CORNER CAFE", amount=Decimal("-4.50"), original_text="x"),
        Transaction(date=date(2024, 2, 19), description="CORNER CAFE", amount=Decimal("-4.50"), original_text="x"),
    ]


def test_default_is_seeded_once(db):
    first = ensure_default(db)
    second = ensure_default(db)

    assert first.id == second.id
    assert first.is_default is True
    assert any(rule["name"] == "British Gas" for rule in first.category_rules)


def test_snapshot_falls_back_to_default_for_missing_rule_set(db):
    snapshot = load_snapshot(db, uuid.uuid4())

    assert snapshot.is_default is True


def test_list_shows_own_and_default_only(db, owner, other_user):
    service = RuleSetService(db)
    service.create_rule_set(owner, CAFE_RULES)
    service.create_rule_set(other_user, {**CAFE_RULES, "name": "Bob's rules"})

    names = [r.name for r in service.list_rule_sets(owner)]

    assert names == ["UK Default Rules", "My rules"]


def test_private_rule_sets_are_hidden_from_other_users(db, owner, other_user, admin):
    service = RuleSetService(db)
    record = service.create_rule_set(owner, CAFE_RULES)

    with pytest.raises(ForbiddenError):
        service.get_rule_set(record.id, other_user)
    assert service.get_rule_set(record.id, admin).id == record.id


def test_only_admins_modify_the_default(db, owner, admin):
    service = RuleSetService(db)
    default = service.get_default()

    with pytest.raises(ForbiddenError):
        service.update_rule_set(default.id, owner, {"description": "mine now"})

    updated = service.update_rule_set(default.id, admin, {"description": "Reviewed"})
    assert updated.description == "Reviewed"
    assert updated.is_default is True


def test_default_cannot_be_deleted(db, admin):
    service = RuleSetService(db)

    with pytest.raises(ValidationError):
        service.delete_rule_set(service.get_default().id, admin)


def test_owner_deletes_own_rule_set(db, owner):
    service = RuleSetService(db)
    record = service.create_rule_set(owner, CAFE_RULES)

    service.delete_rule_set(record.id, owner)

    with pytest.raises(NotFoundError):
        service.get_rule_set(record.id, owner)


def test_invalid_rule_set_is_rejected(db, owner):
    service = RuleSetService(db)

    with pytest.raises(ValidationError):
        service.create_rule_set(owner, {"name": "Broken", "category_rules": [{"name": "x", "patterns": []}]})
    with pytest.raises(ValidationError):
        service.create_rule_set(owner, {"name": ""})


def test_add_pattern(db, owner):
    service = RuleSetService(db)
    record = service.create_rule_set(owner, CAFE_RULES)

    updated = service.add_pattern(record.id, owner, "Cafe", "CORNER CAFÉ")
    service.add_pattern(record.id, owner, "Cafe", "corner cafe")

    assert updated.category_rules[0]["patterns"] == ["CORNER CAFE", "CORNER CAFÉ"]
    with pytest.raises(NotFoundError):
        service.add_pattern(record.id, owner, "Gym", "PUREGYM")
    with pytest.raises(ValidationError):
        service.add_pattern(record.id, owner, "Cafe", "   ")


def test_rule_testing_uses_the_chosen_rule_set(db, owner):
    service = RuleSetService(db)
    record = service.create_rule_set(owner, CAFE_RULES)

    with_custom = service.test_rules(record.id, owner, cafe_transactions())
    with_default = service.test_rules(None, owner, cafe_transactions())

    assert with_custom[0].category == "subscription"
    assert with_custom[0].low_confidence is False
    assert with_custom[0].domain_suggestion.domain == "services"
    assert with_default[0].category == "uncategorized"
    assert with_default[0].low_confidence is True


def test_detection_statistics_cover_completed_imports(db, blob_store, owner, sample_statement):
    outcome = ImportService(db, blob_store).upload_statement(owner, sample_statement, "june.pdf")
    ImportPipeline(sessionmaker(bind=db.get_bind()), blob_store).run(outcome.session_id)
    db.expire_all()

    stats = RuleSetService(db).detection_statistics(owner)

    assert stats["sessions_analysed"] == 1
    assert stats["total_transactions"] == 14
    assert stats["recurring_detected"] == 2
    assert stats["pending"] == 2


def test_partial_settings_update_keeps_other_settings(db, owner):
    service = RuleSetService(db)
    record = service.create_rule_set(
        owner,
        {**CAFE_RULES, "settings": {"fuzzy_match_threshold": 0.95, "frequency_buckets": {"monthly": [26, 34]}}},
    )

    service.update_rule_set(record.id, owner, {"settings": {"min_confidence_threshold": 0.7}})
    service.update_rule_set(record.id, owner, {"settings": {"frequency_buckets": {"weekly": [6, 8]}}})

    stored = load_snapshot(db, record.id).settings
    assert stored.min_confidence_threshold == 0.7
    assert stored.fuzzy_match_threshold == 0.95
    assert [(b.frequency.value, b.min_days, b.max_days) for b in stored.frequency_buckets] == [
        ("weekly", 6, 8),
        ("monthly", 26, 34),
    ]


def test_rule_testing_matches_the_import_pipeline(db, blob_store, owner, sample_statement):
    """Test sample testing and a real import produce the same suggestions"""
    outcome = ImportService(db, blob_store).upload_statement(owner, sample_statement, "june.pdf")
    ImportPipeline(sessionmaker(bind=db.get_bind()), blob_store).run(outcome.session_id)
    db.expire_all()
    record = ImportService(db, blob_store).get_session(outcome.session_id, owner)
    transactions = [
        Transaction(
            date=row.txn_date,
            description=row.description,
            amount=from_pence(row.amount_pence),
            original_text=row.original_text,
            balance=from_pence(row.balance_pence),
        )
        for row in record.transactions
    ]

    tested = RuleSetService(db).test_rules(None, owner, transactions)

    assert len(tested) == len(record.suggestions) == 2
    for suggestion, row in zip(tested, record.suggestions):
        assert suggestion.payee == row.payee
        assert suggestion.category == row.category
        assert suggestion.frequency.value == row.frequency
        assert suggestion.confidence == row.confidence
        assert suggestion.amount == from_pence(row.amount_pence)
        assert suggestion.transaction_indexes == list(row.transaction_indexes)
        assert {
            "title": suggestion.suggested_entry.title,
            "provider": suggestion.suggested_entry.provider,
            "type": suggestion.suggested_entry.type,
        } == row.suggested_entry
        assert suggestion.domain_suggestion.domain == row.suggested_domain
