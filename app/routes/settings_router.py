from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.auth import get_current_user, require_permission
from app.auth.permissions import Permission, can
from app.database.database import get_db
from app.models.models import Department, InventoryCategory, InventoryUnit, User
from app.schemas.settings_schema import NameCreate, NameResponse
from app.services import settings_service

router = APIRouter(prefix="/api/settings", tags=["Settings"])


async def reference_reader(current_user: User = Depends(get_current_user)) -> User:
    # Categories and units also feed the inventory screens
    if not (
        can(current_user, Permission.SETTINGS_READ)
        or can(current_user, Permission.INVENTORY_READ)
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Not enough permissions"
        )
    return current_user


# Categories


@router.get("/categories", status_code=status.HTTP_200_OK)
async def list_categories(
    current_user: User = Depends(reference_reader),
    db: AsyncSession = Depends(get_db),
) -> list[NameResponse]:
    return await settings_service.list_names(db, InventoryCategory)


@router.post("/categories", status_code=status.HTTP_201_CREATED)
async def create_category(
    data: NameCreate,
    current_user: User = Depends(require_permission(Permission.SETTINGS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> NameResponse:
    return await settings_service.create_name(db, InventoryCategory, data.name)


@router.put("/categories/{category_id}", status_code=status.HTTP_200_OK)
async def rename_category(
    category_id: int,
    data: NameCreate,
    current_user: User = Depends(require_permission(Permission.SETTINGS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> NameResponse:
    return await settings_service.rename(db, InventoryCategory, category_id, data.name)


@router.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_category(
    category_id: int,
    current_user: User = Depends(require_permission(Permission.SETTINGS_WRITE)),
    db: AsyncSession = Depends(get_db),
):
    await settings_service.delete_name(db, InventoryCategory, category_id)


# Units


@router.get("/units", status_code=status.HTTP_200_OK)
async def list_units(
    current_user: User = Depends(reference_reader),
    db: AsyncSession = Depends(get_db),
) -> list[NameResponse]:
    return await settings_service.list_names(db, InventoryUnit)


@router.post("/units", status_code=status.HTTP_201_CREATED)
async def create_unit(
    data: NameCreate,
    current_user: User = Depends(require_permission(Permission.SETTINGS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> NameResponse:
    return await settings_service.create_name(db, InventoryUnit, data.name)


@router.put("/units/{unit_id}", status_code=status.HTTP_200_OK)
async def rename_unit(
    unit_id: int,
    data: NameCreate,
    current_user: User = Depends(require_permission(Permission.SETTINGS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> NameResponse:
    return await settings_service.rename(db, InventoryUnit, unit_id, data.name)


@router.delete("/units/{unit_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_unit(
    unit_id: int,
    current_user: User = Depends(require_permission(Permission.SETTINGS_WRITE)),
    db: AsyncSession = Depends(get_db),
):
    await settings_service.delete_name(db, InventoryUnit, unit_id)


# Departments


@router.get("/departments", status_code=status.HTTP_200_OK)
async def list_departments(
    current_user: User = Depends(require_permission(Permission.SETTINGS_READ)),
    db: AsyncSession = Depends(get_db),
) -> list[NameResponse]:
    return await settings_service.list_names(db, Department)


@router.post("/departments", status_code=status.HTTP_201_CREATED)
async def create_department(
    data: NameCreate,
    current_user: User = Depends(require_permission(Permission.SETTINGS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> NameResponse:
    return await settings_service.create_name(db, Department, data.name)


@router.put("/departments/{department_id}", status_code=status.HTTP_200_OK)
async def rename_department(
    department_id: int,
    data: NameCreate,
    current_user: User = Depends(require_permission(Permission.SETTINGS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> NameResponse:
    return await settings_service.rename(db, Department, department_id, data.name)


@router.delete("/departments/{department_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_department(
    department_id: int,
    current_user: User = Depends(require_permission(Permission.SETTINGS_WRITE)),
    db: AsyncSession = Depends(get_db),
):
    await settings_service.delete_name(db, Department, department_id)
