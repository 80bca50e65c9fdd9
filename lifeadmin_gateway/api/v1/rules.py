"""/v1/rule-sets - detection rule management and rule testing"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from starlette.responses import Response

from lifeadmin_gateway.api.dependencies import get_principal
from lifeadmin_gateway.api.v1.schemas import (
    AddPatternRequest,
    RuleSetListResponse,
    RuleSetRequest,
    RuleSetResponse,
    RuleSetUpdateRequest,
    RuleTestRequest,
    RuleTestResponse,
    SuggestionSchema,
)
from lifeadmin_gateway.domain.models import Principal, Transaction
from lifeadmin_gateway.infrastructure.database.models import DetectionRuleSetRecord
from lifeadmin_gateway.infrastructure.database.session import get_db
from lifeadmin_gateway.services.rules import RuleSetService, serialize_rule_set

router = APIRouter()


def _rule_set_response(record: DetectionRuleSetRecord) -> RuleSetResponse:
    return RuleSetResponse(**serialize_rule_set(record))


@router.get("/rule-sets", response_model=RuleSetListResponse)
def list_rule_sets(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    """Caller's own rule sets plus the shared default"""
    records = RuleSetService(db).list_rule_sets(principal)
    return RuleSetListResponse(rule_sets=[_rule_set_response(r) for r in records])


@router.get("/rule-sets/default", response_model=RuleSetResponse)
def get_default_rule_set(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return _rule_set_response(RuleSetService(db).get_default())


@router.get("/rule-sets/statistics")
def get_detection_statistics(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return RuleSetService(db).detection_statistics(principal)


@router.post("/rule-sets/test", response_model=RuleTestResponse)
def run_rule_test(
    request_body: RuleTestRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Run the import detector over sample transactions; nothing is persisted"""
    samples = [
        Transaction(date=t.date, description=t.description, amount=t.amount, original_text=t.description)
        for t in request_body.transactions
    ]
    suggestions = RuleSetService(db).test_rules(request_body.rule_set_id, principal, samples)
    return RuleTestResponse(
        rule_set_id=request_body.rule_set_id,
        suggestions=[SuggestionSchema.from_domain(i, s) for i, s in enumerate(suggestions)],
    )


@router.post("/rule-sets", response_model=RuleSetResponse, status_code=201)
def create_rule_set(
    request_body: RuleSetRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    record = RuleSetService(db).create_rule_set(principal, request_body.model_dump(exclude_none=True))
    return _rule_set_response(record)


@router.get("/rule-sets/{rule_set_id}", response_model=RuleSetResponse)
def get_rule_set(rule_set_id: str, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return _rule_set_response(RuleSetService(db).get_rule_set(rule_set_id, principal))


@router.put("/rule-sets/{rule_set_id}", response_model=RuleSetResponse)
def update_rule_set(
    rule_set_id: str,
    request_body: RuleSetUpdateRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    record = RuleSetService(db).update_rule_set(rule_set_id, principal, request_body.model_dump(exclude_none=True))
    return _rule_set_response(record)


@router.post("/rule-sets/{rule_set_id}/patterns", response_model=RuleSetResponse)
def add_pattern(
    rule_set_id: str,
    request_body: AddPatternRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    record = RuleSetService(db).add_pattern(rule_set_id, principal, request_body.rule_name, request_body.pattern)
    return _rule_set_response(record)


@router.delete("/rule-sets/{rule_set_id}", status_code=204)
def delete_rule_set(rule_set_id: str, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    RuleSetService(db).delete_rule_set(rule_set_id, principal)
    return Response(status_code=204)
