"""GET /v1/portal/installments - Customer self-service installment lookup"""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from installment_gateway.api.dependencies import get_today
from installment_gateway.api.v1.sales import month_schemas
from installment_gateway.api.v1.schemas import PortalResponse, PortalSaleSchema
from installment_gateway.infrastructure.database.repositories import SaleRepository, ScheduleRepository
from installment_gateway.infrastructure.database.session import get_db

router = APIRouter()


@router.get("/portal/installments", response_model=PortalResponse)
def lookup_installments(
    payer_account: str = Query(..., min_length=1, description="Customer postal account number"),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    """
    Let a customer look up their schedules by postal account.

    Returns:
        Non-cancelled sales with their months labelled paid, overdue or upcoming
    """
    sales = SaleRepository(db).sales_for_payer_account(payer_account.strip())
    if not sales:
        raise HTTPException(status_code=404, detail="No sales found for this account")

    schedule_repo = ScheduleRepository(db)
    customer = sales[0].customer
    return PortalResponse(
        payer_account=payer_account.strip(),
        customer_name=f"{customer.first_name} {customer.last_name}",
        sales=[
            PortalSaleSchema(
                sale_id=sale.id,
                total_amount=sale.total_amount,
                paid_amount=sale.paid_amount,
                status=sale.status,
                months=month_schemas(schedule_repo.installments_for_sale(sale.id), today),
            )
            for sale in sales
        ],
    )
