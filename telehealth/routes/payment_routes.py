from typing import Any

from fastapi import APIRouter, Body, Depends

from telehealth.auth.dependencies import require_patient
from telehealth.auth.jwt_handler import TokenClaims
from telehealth.routes.common import translate_errors
from telehealth.routes.schemas import Envelope, envelope
from telehealth.services import payment_gateway

router = APIRouter(tags=['payment'])


@router.post('/initiate', response_model=Envelope[dict[str, Any]])
async def initiate_payment(
    payload: dict[str, Any] = Body(...),
    _patient: TokenClaims = Depends(require_patient),
):
    with translate_errors():
        response = await payment_gateway.initiate_payment(payload)
    return envelope('Payment initiated', response)
