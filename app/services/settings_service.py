"""Reference data: inventory categories, units and departments.

All three are plain unique-name tables, so one set of helpers serves them.
"""

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import Department, InventoryCategory, InventoryUnit

NamedModel = type[InventoryCategory] | type[InventoryUnit] | type[Department]

LABELS = {
    InventoryCategory: "Category",
    InventoryUnit: "Unit",
    Department: "Department",
}


async def list_names(db: AsyncSession, model: NamedModel):
    result = await db.execute(select(model).order_by(model.name))
    return result.scalars().all()


async def _ensure_unique(db: AsyncSession, model: NamedModel, name: str, exclude_id=None):
    stmt = select(model.id).where(model.name == name)
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{LABELS[model]} already exists",
        )


async def _get_or_404(db: AsyncSession, model: NamedModel, item_id: int):
    item = await db.get(model, item_id)
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{LABELS[model]} not found",
        )
    return item


async def create_name(db: AsyncSession, model: NamedModel, name: str):
    name = name.strip()
    await _ensure_unique(db, model, name)
    item = model(name=name)
    db.add(item)
    await db.commit()
    return item


async def rename(db: AsyncSession, model: NamedModel, item_id: int, name: str):
    item = await _get_or_404(db, model, item_id)
    name = name.strip()
    await _ensure_unique(db, model, name, exclude_id=item_id)
    item.name = name
    await db.commit()
    return item


async def delete_name(db: AsyncSession, model: NamedModel, item_id: int) -> None:
    item = await _get_or_404(db, model, item_id)
    await db.delete(item)
    await db.commit()
