from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from stockledger.db import get_db
from stockledger.deps import require_auth, require_perm, INVENTORY_EDIT
from stockledger.models.core import Customer, Supplier
from stockledger.schemas.catalog import CounterpartyIn, CounterpartyOut

router = APIRouter(tags=["counterparties"])

def _create(model, body: CounterpartyIn, db: Session) -> CounterpartyOut:
    # reuse an existing record with the same phone rather than duplicating it
    if body.phone:
        existing = db.query(model).filter(model.phone == body.phone, model.deleted_at.is_(None)).first()
        if existing:
            return CounterpartyOut(id=existing.id, name=existing.name, phone=existing.phone)
    c = model(**body.model_dump())
    db.add(c); db.commit(); db.refresh(c)
    return CounterpartyOut(id=c.id, name=c.name, phone=c.phone)

def _get(model, ident: str, db: Session, label: str) -> CounterpartyOut:
    c = db.get(model, ident)
    if not c or c.deleted_at is not None:
        raise HTTPException(404, detail=f"{label} not found")
    return CounterpartyOut(id=c.id, name=c.name, phone=c.phone)

@router.post("/customers", response_model=CounterpartyOut)
def create_customer(body: CounterpartyIn, db: Session = Depends(get_db), sub: str = Depends(require_perm(INVENTORY_EDIT))):
    return _create(Customer, body, db)

@router.get("/customers/{customer_id}", response_model=CounterpartyOut)
def get_customer(customer_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return _get(Customer, customer_id, db, "customer")

@router.post("/suppliers", response_model=CounterpartyOut)
def create_supplier(body: CounterpartyIn, db: Session = Depends(get_db), sub: str = Depends(require_perm(INVENTORY_EDIT))):
    return _create(Supplier, body, db)

@router.get("/suppliers/{supplier_id}", response_model=CounterpartyOut)
def get_supplier(supplier_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return _get(Supplier, supplier_id, db, "supplier")
