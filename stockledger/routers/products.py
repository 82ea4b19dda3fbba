from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from stockledger.db import get_db
from stockledger.deps import require_auth, require_perm, INVENTORY_EDIT
from stockledger.models.core import Product
from stockledger.schemas.catalog import ProductIn, ProductOut

router = APIRouter(prefix="/products", tags=["products"])

@router.post("/", response_model=ProductOut)
def create_product(body: ProductIn, db: Session = Depends(get_db), sub: str = Depends(require_perm(INVENTORY_EDIT))):
    # stock only moves through the ledger, never through this endpoint
    p = Product(**body.model_dump())
    db.add(p); db.commit(); db.refresh(p)
    return ProductOut.model_validate(p)

@router.get("/", response_model=list[ProductOut])
def list_products(q: str | None = None, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    query = db.query(Product).filter(Product.deleted_at.is_(None))
    if q:
        query = query.filter(Product.name.ilike(f"%{q}%"))
    return [ProductOut.model_validate(p) for p in query.order_by(Product.name.asc()).all()]

@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    p = db.get(Product, product_id)
    if not p or p.deleted_at is not None:
        raise HTTPException(404, detail="product not found")
    return ProductOut.model_validate(p)
