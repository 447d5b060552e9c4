import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import Caller, get_current_user
from ..schemas.equipment import ItemCreate, ItemList, ItemResponse, ItemUpdate
from ..services import equipment_ledger as ledger
from ..services import inventory
from ..services.permissions import authorize


router = APIRouter(prefix="/equipment", tags=["equipment"])


@router.get("", response_model=ItemList)
def list_items(
    q: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    rows, total = inventory.list_items(db, caller, q=q, limit=limit, offset=offset)
    return {
        "data": rows,
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(rows) < total,
    }


@router.post("", response_model=ItemResponse, status_code=201)
def create_item(payload: ItemCreate, db: Session = Depends(get_db), caller: Caller = Depends(get_current_user)):
    return inventory.create_item(db, caller, payload)


@router.patch("/{item_id}", response_model=ItemResponse)
def update_item(
    item_id: uuid.UUID,
    changes: ItemUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_user),
):
    return inventory.update_item(db, caller, item_id, changes)


@router.delete("/{item_id}")
def delete_item(item_id: uuid.UUID, db: Session = Depends(get_db), caller: Caller = Depends(get_current_user)):
    inventory.delete_item(db, caller, item_id)
    return {"message": "Equipment deleted successfully"}


@router.get("/{item_id}/balance")
def item_balance(item_id: uuid.UUID, db: Session = Depends(get_db), caller: Caller = Depends(get_current_user)):
    authorize(db, caller, "equipment.list")
    return ledger.balance(db, item_id)
