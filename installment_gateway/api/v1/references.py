"""Reference code previews and uniqueness checks for the sale form"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from installment_gateway.api.dependencies import get_settings
from installment_gateway.api.errors import to_http_exception
from installment_gateway.api.v1.schemas import (
    NextReferencesResponse,
    ReferenceCheckItem,
    ReferenceCheckRequest,
    ReferenceCheckResponse,
)
from installment_gateway.config import Settings
from installment_gateway.domain.exceptions import DomainException
from installment_gateway.domain.models import CodeStatus
from installment_gateway.domain.references import allocate_codes, classify_codes
from installment_gateway.infrastructure.database.repositories import ReferenceRepository
from installment_gateway.infrastructure.database.session import get_db

router = APIRouter()


@router.get("/references/next", response_model=NextReferencesResponse)
def preview_next_codes(
    prefix: str = Query(..., description="Branch reference prefix"),
    count: int = Query(1, ge=1),
    db: Session = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
):
    """
    Preview the codes the next schedule for a prefix would receive.

    Nothing is reserved: numbers are only taken when a schedule is saved, so
    the preview can differ from the final codes under concurrent sales.
    """
    try:
        if count > app_settings.max_references:
            count = app_settings.max_references
        last_number = ReferenceRepository(db).peek_last_number(prefix)
        slots = allocate_codes(prefix, last_number, count)
    except DomainException as e:
        raise to_http_exception(e)

    return NextReferencesResponse(prefix=prefix, last_number=last_number, codes=[s.code for s in slots])


@router.post("/references/check", response_model=ReferenceCheckResponse)
def check_codes(body: ReferenceCheckRequest, db: Session = Depends(get_db)):
    """
    Classify a batch of candidate codes.

    Each code is available, duplicated within the batch, or already issued.
    The answer can go stale: codes are checked again when the schedule is saved.
    """
    codes = [code.strip() for code in body.codes]
    try:
        statuses = classify_codes(codes, ReferenceRepository(db).code_exists)
    except DomainException as e:
        raise to_http_exception(e)

    results = [
        ReferenceCheckItem(slot=index, code=code, status=status.value)
        for index, (code, status) in enumerate(zip(codes, statuses))
    ]
    return ReferenceCheckResponse(
        available=all(status == CodeStatus.AVAILABLE for status in statuses),
        results=results,
    )
