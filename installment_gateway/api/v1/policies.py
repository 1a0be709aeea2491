"""GET /v1/policies - Contract policies available to the sale form"""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from installment_gateway.api.v1.schemas import PolicySchema
from installment_gateway.infrastructure.database.repositories import PolicyRepository
from installment_gateway.infrastructure.database.session import get_db

router = APIRouter()


@router.get("/policies", response_model=List[PolicySchema])
def list_policies(db: Session = Depends(get_db)):
    return [
        PolicySchema(
            id=policy.id,
            display_name=policy.display_name,
            day_rule=policy.day_rule.value,
            explicit_day=policy.explicit_day,
            target_day=policy.target_day,
        )
        for policy in PolicyRepository(db).list_policies()
    ]
