"""Detection rule set management, snapshots and rule testing"""

import logging
import uuid
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lifeadmin_gateway.domain.detector import detect
from lifeadmin_gateway.domain.domain_suggestion import attach_domain_suggestions
from lifeadmin_gateway.domain.exceptions import ForbiddenError, NotFoundError, ValidationError
from lifeadmin_gateway.domain.models import (
    DetectionRuleSet,
    Principal,
    RecurringPaymentSuggestion,
    SuggestionStatus,
    Transaction,
)
from lifeadmin_gateway.domain.rules import (
    category_rule_to_dict,
    default_rule_set,
    detection_settings_to_dict,
    rule_set_from_dict,
)
from lifeadmin_gateway.infrastructure.database.models import DetectionRuleSetRecord
from lifeadmin_gateway.infrastructure.database.repositories import (
    ImportSessionRepository,
    RuleSetRepository,
    to_rule_set,
)
from lifeadmin_gateway.utils.ids import parse_uuid

logger = logging.getLogger(__name__)


def ensure_default(db: Session) -> DetectionRuleSetRecord:
    """
    Return the process-wide default rule set, seeding it on first use.

    Concurrent seeders race on the partial unique index; the loser rolls
    back and reads the winner's row.
    """
    repo = RuleSetRepository(db)
    record = repo.get_default()
    if record is not None:
        return record

    try:
        record = repo.create(default_rule_set())
        db.commit()
        logger.info("Default detection rule set seeded", extra={"rule_set_id": str(record.id)})
        return record
    except IntegrityError:
        db.rollback()
        record = repo.get_default()
        if record is None:
            raise
        return record


def load_snapshot(db: Session, rule_set_id: Optional[uuid.UUID] = None) -> DetectionRuleSet:
    """Immutable rule set for one detection pass; falls back to the default"""
    if rule_set_id is not None:
        record = RuleSetRepository(db).get(rule_set_id)
        if record is not None:
            return to_rule_set(record)
        logger.warning("Rule set missing, using default", extra={"rule_set_id": str(rule_set_id)})
    return to_rule_set(ensure_default(db))


def serialize_rule_set(record: DetectionRuleSetRecord) -> Dict[str, Any]:
    snapshot = to_rule_set(record)
    return {
        "id": str(record.id),
        "name": snapshot.name,
        "description": snapshot.description,
        "version": snapshot.version,
        "is_default": snapshot.is_default,
        "owner_id": snapshot.owner_id,
        "category_rules": [category_rule_to_dict(r) for r in snapshot.category_rules],
        "settings": detection_settings_to_dict(snapshot.settings),
    }


def merge_settings(current: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay a partial settings update; nested weight and bucket maps merge per key"""
    merged = {**current, **{k: v for k, v in changes.items() if v is not None}}
    for nested in ("confidence_weights", "frequency_buckets"):
        if changes.get(nested):
            merged[nested] = {**(current.get(nested) or {}), **changes[nested]}
    return merged


class RuleSetService:
    """Rule set CRUD with ownership checks; the default is shared and read-only to users"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = RuleSetRepository(db)

    def get_default(self) -> DetectionRuleSetRecord:
        return ensure_default(self.db)

    def list_rule_sets(self, principal: Principal) -> List[DetectionRuleSetRecord]:
        ensure_default(self.db)
        return self.repo.list_for_owner(principal.id)

    def get_rule_set(self, rule_set_id: Any, principal: Principal) -> DetectionRuleSetRecord:
        record = self.repo.get(parse_uuid(rule_set_id, "Rule set"))
        if record is None:
            raise NotFoundError(f"Rule set {rule_set_id} not found")
        if not (record.is_default or record.owner_id == principal.id or principal.is_admin):
            raise ForbiddenError("Rule set belongs to another user")
        return record

    def _get_writable(self, rule_set_id: Any, principal: Principal) -> DetectionRuleSetRecord:
        record = self.get_rule_set(rule_set_id, principal)
        if record.is_default and not principal.is_admin:
            raise ForbiddenError("Only administrators can modify the default rule set")
        if not record.is_default and record.owner_id != principal.id and not principal.is_admin:
            raise ForbiddenError("Rule set belongs to another user")
        return record

    def create_rule_set(self, principal: Principal, data: Dict[str, Any]) -> DetectionRuleSetRecord:
        rule_set = rule_set_from_dict(data, owner_id=principal.id)
        record = self.repo.create(rule_set)
        self.db.commit()
        logger.info("Rule set created", extra={"rule_set_id": str(record.id), "owner_id": principal.id})
        return record

    def update_rule_set(self, rule_set_id: Any, principal: Principal, data: Dict[str, Any]) -> DetectionRuleSetRecord:
        record = self._get_writable(rule_set_id, principal)
        current = serialize_rule_set(record)
        merged = {**current, **{k: v for k, v in data.items() if v is not None}}
        if data.get("settings"):
            merged["settings"] = merge_settings(current["settings"], data["settings"])
        rule_set = rule_set_from_dict(merged, owner_id=record.owner_id, is_default=record.is_default)
        self.repo.replace(record, rule_set)
        self.db.commit()
        return record

    def delete_rule_set(self, rule_set_id: Any, principal: Principal) -> None:
        record = self._get_writable(rule_set_id, principal)
        if record.is_default:
            raise ValidationError("The default rule set cannot be deleted")
        self.repo.delete(record)
        self.db.commit()

    def add_pattern(self, rule_set_id: Any, principal: Principal, rule_name: str, pattern: str) -> DetectionRuleSetRecord:
        """Append a payee pattern to one category rule"""
        pattern = (pattern or "").strip()
        if not pattern:
            raise ValidationError("Pattern must not be empty")

        record = self._get_writable(rule_set_id, principal)
        data = serialize_rule_set(record)
        for rule in data["category_rules"]:
            if rule["name"] == rule_name:
                if pattern.casefold() not in (p.casefold() for p in rule["patterns"]):
                    rule["patterns"].append(pattern)
                break
        else:
            raise NotFoundError(f"Category rule {rule_name!r} not found in rule set")

        self.repo.replace(record, rule_set_from_dict(data, owner_id=record.owner_id, is_default=record.is_default))
        self.db.commit()
        return record

    def test_rules(
        self,
        rule_set_id: Optional[Any],
        principal: Principal,
        sample_transactions: Sequence[Transaction],
    ) -> List[RecurringPaymentSuggestion]:
        """Run the import detector over sample data without persisting anything"""
        if rule_set_id is None:
            snapshot = to_rule_set(ensure_default(self.db))
        else:
            snapshot = to_rule_set(self.get_rule_set(rule_set_id, principal))
        return attach_domain_suggestions(detect(sample_transactions, snapshot))

    def detection_statistics(self, principal: Principal) -> Dict[str, Any]:
        """Detection outcomes across the owner's completed imports"""
        sessions = ImportSessionRepository(self.db).completed_for_owner(principal.id)

        statuses: Counter = Counter()
        categories: Counter = Counter()
        frequencies: Counter = Counter()
        total_transactions = 0
        low_confidence = 0

        for session in sessions:
            total_transactions += session.total_transactions
            for suggestion in session.suggestions:
                statuses[suggestion.status] += 1
                categories[suggestion.category] += 1
                frequencies[suggestion.frequency] += 1
                low_confidence += int(suggestion.low_confidence)

        detected = sum(statuses.values())
        decided = statuses[SuggestionStatus.ACCEPTED.value] + statuses[SuggestionStatus.REJECTED.value]
        return {
            "sessions_analysed": len(sessions),
            "total_transactions": total_transactions,
            "recurring_detected": detected,
            "low_confidence": low_confidence,
            "accepted": statuses[SuggestionStatus.ACCEPTED.value],
            "rejected": statuses[SuggestionStatus.REJECTED.value],
            "pending": statuses[SuggestionStatus.PENDING.value],
            "acceptance_rate": round(statuses[SuggestionStatus.ACCEPTED.value] / decided, 3) if decided else None,
            "by_category": dict(categories),
            "by_frequency": dict(frequencies),
        }
