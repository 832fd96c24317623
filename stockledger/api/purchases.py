"""
Purchases API - order lifecycle and receiving
"""
from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from uuid import UUID

from stockledger.schemas.purchase import (
    PurchaseOrderCreate, PurchaseOrderResponse, PurchaseStats, ReceiveLineResult, ReceivePreview, ReceiveRequest,
)
from stockledger.models import PurchaseStatus
from stockledger.services import PurchaseService
from .deps import get_purchases

router = APIRouter(prefix="/purchases", tags=["Purchases"])


@router.post("", response_model=PurchaseOrderResponse, status_code=201)
def create_purchase_order(data: PurchaseOrderCreate, purchases: PurchaseService = Depends(get_purchases)):
    return purchases.create_purchase_order(
        data.lines,
        supplier_name=data.supplier_name,
        order_number=data.order_number,
        note=data.note,
    )


@router.get("")
def list_purchase_orders(
    status: Optional[PurchaseStatus] = Query(None),
    supplier_name: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Order number contains"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    purchases: PurchaseService = Depends(get_purchases),
):
    orders, total = purchases.list_purchase_orders(
        status=status,
        supplier_name=supplier_name,
        search=search,
        page=page,
        per_page=per_page,
    )
    return {
        "orders": [PurchaseOrderResponse.model_validate(o) for o in orders],
        "total": total,
        "page": page,
        "per_page": per_page,
    }


@router.get("/stats", response_model=PurchaseStats)
def get_purchase_stats(purchases: PurchaseService = Depends(get_purchases)):
    """Order counts by status and ordered amounts per supplier"""
    return purchases.get_purchase_stats()


@router.get("/{order_id}", response_model=PurchaseOrderResponse)
def get_purchase_order(order_id: UUID, purchases: PurchaseService = Depends(get_purchases)):
    return purchases.get_order(order_id)


@router.post("/{order_id}/place", response_model=PurchaseOrderResponse)
def place_order(order_id: UUID, purchases: PurchaseService = Depends(get_purchases)):
    return purchases.place_order(order_id)


@router.post("/{order_id}/cancel", response_model=PurchaseOrderResponse)
def cancel_order(order_id: UUID, purchases: PurchaseService = Depends(get_purchases)):
    return purchases.cancel_order(order_id)


@router.post("/{order_id}/preview", response_model=ReceivePreview)
def preview_receive(
    order_id: UUID,
    data: Optional[ReceiveRequest] = None,
    purchases: PurchaseService = Depends(get_purchases),
):
    """
    Impact of a receipt on quantities and costs, without writing anything.
    Omit lines to preview receiving everything still open.
    """
    return purchases.preview_receive(order_id, data.lines if data else None)


@router.post("/{order_id}/receive", response_model=List[ReceiveLineResult])
def receive_purchase(
    order_id: UUID,
    data: Optional[ReceiveRequest] = None,
    purchases: PurchaseService = Depends(get_purchases),
):
    """Receive stock; each line succeeds or fails on its own"""
    return purchases.receive_purchase(order_id, data.lines if data else None)
