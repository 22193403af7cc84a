from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from storefront.core.config import get_settings
from storefront.demo.catalog import seed_demo_catalog
from storefront.persistence.pg import get_session

router = APIRouter(tags=["demo"])


@router.post("/demo/seed")
def demo_seed(session: Session = Depends(get_session)):
    if not get_settings().is_dev:
        raise HTTPException(status_code=404, detail="not found")
    return seed_demo_catalog(session)
