from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from app.engine.catalog import get_catalog

router = APIRouter()


@router.get("")
def list_ingredients(category: Optional[str] = Query(None, description="base or individual")):
    """List catalog ingredients with their canonical doses."""
    catalog = get_catalog()
    if category == "base":
        items = catalog.bases()
    elif category == "individual":
        items = catalog.individuals()
    elif category is None:
        items = catalog.all()
    else:
        raise HTTPException(status_code=400, detail="category must be 'base' or 'individual'")

    return {
        "ingredients": [i.to_dict() for i in items],
        "count": len(items)
    }


@router.get("/{name}")
def get_ingredient(name: str):
    info = get_catalog().get(name)
    if not info:
        raise HTTPException(status_code=404, detail=f"Unknown ingredient: {name}")
    return info.to_dict()
