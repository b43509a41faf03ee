from fastapi import APIRouter, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from storefront.api.deps import DB
from storefront.models.order import Order
from storefront.schemas.order import OrderResponse


router = APIRouter(tags=["Orders"])


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
)
async def get_order(
    order_id: str,
    db: DB,
):
    """Get an order by ID, as shown on the checkout success page."""
    result = await db.execute(
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.id == order_id)
    )
    order = result.scalar_one_or_none()

    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found"
        )

    return order
