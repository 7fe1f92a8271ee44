"""
Shopper-facing negotiation routes.
"""

import logging

from typing import List

from fastapi import APIRouter, Depends, Request

from haggle.db import get_engine
from haggle.models import OfferRequest
from haggle.schemas import OfferBody, OfferResponse, RuleResponse, SessionResponse, TokenResponse
from haggle.services import NegotiationEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/negotiation")


def _session_view(session) -> SessionResponse:
    data = session.to_dict()
    data["final_offered"] = session.final_offered
    return SessionResponse.model_validate(data)


@router.post("/offer", response_model=OfferResponse)
async def submit_offer(
    body: OfferBody,
    request: Request,
    engine: NegotiationEngine = Depends(get_engine)
):
    """
    Submit a numeric offer for a SKU.

    Returns:
        Accept, counter, final, reject or expired, with the current round
    """
    ip_address = request.client.host if request.client else None
    result = await engine.submit_offer(OfferRequest(**body.model_dump(), ip_address=ip_address))
    return OfferResponse.model_validate(result.to_dict())


@router.post("/{session_id}/accept", response_model=OfferResponse)
async def accept_final(session_id: str, engine: NegotiationEngine = Depends(get_engine)):
    """Accept the final counter of a session"""
    result = await engine.confirm_final(session_id)
    return OfferResponse.model_validate(result.to_dict())


@router.post("/{session_id}/decline", response_model=OfferResponse)
async def decline(session_id: str, engine: NegotiationEngine = Depends(get_engine)):
    """Walk away from a negotiation"""
    result = await engine.decline(session_id)
    return OfferResponse.model_validate(result.to_dict())


@router.get("/session/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, engine: NegotiationEngine = Depends(get_engine)):
    session = await engine.get_session(session_id)
    return _session_view(session)


@router.get("/tokens/{token}", response_model=TokenResponse)
async def validate_token(token: str, engine: NegotiationEngine = Depends(get_engine)):
    """
    Check a discount token before checkout.

    Returns:
        The token record if it can still be redeemed
    """
    record = await engine.validate_token(token)
    return TokenResponse.model_validate(record.to_dict())


@router.post("/tokens/{token}/redeem", response_model=TokenResponse)
async def redeem_token(token: str, engine: NegotiationEngine = Depends(get_engine)):
    """Redeem a discount token; succeeds once per token"""
    record = await engine.redeem_token(token)
    return TokenResponse.model_validate(record.to_dict())


@router.get("/rules", response_model=List[RuleResponse])
async def list_rules(engine: NegotiationEngine = Depends(get_engine)):
    """Rules open for negotiation, highest priority first"""
    rules = await engine.rules.list(enabled_only=True)
    return [RuleResponse.model_validate(rule.to_dict()) for rule in rules]
