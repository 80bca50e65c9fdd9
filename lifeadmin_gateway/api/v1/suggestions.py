"""POST /v1/suggestions/domain - Suggest a life domain for a payee"""

from fastapi import APIRouter, Depends

from lifeadmin_gateway.api.dependencies import get_principal
from lifeadmin_gateway.api.v1.schemas import DomainSuggestionResponse, DomainSuggestRequest
from lifeadmin_gateway.domain.domain_suggestion import suggest_domain
from lifeadmin_gateway.domain.models import Principal

router = APIRouter()


@router.post("/suggestions/domain", response_model=DomainSuggestionResponse)
def suggest_payee_domain(request_body: DomainSuggestRequest, principal: Principal = Depends(get_principal)):
    suggestion = suggest_domain(
        request_body.payee,
        category=request_body.category,
        subcategory=request_body.subcategory,
        description=request_body.description,
    )
    return DomainSuggestionResponse(
        domain=suggestion.domain,
        confidence=suggestion.confidence,
        record_type=suggestion.record_type,
        reasoning=suggestion.reasoning,
    )
