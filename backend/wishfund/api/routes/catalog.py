import logging

from fastapi import APIRouter, Query, status
from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from wishfund.api.deps import CurrentUser, DbSessionDep, OptionalUser, PageDep
from wishfund.core.errors import AppError, forbidden, not_found
from wishfund.core.identifiers import money
from wishfund.models.models import (
    Category,
    CuratedItem,
    GenderEnum,
    ItemTypeEnum,
    User,
    WishlistItem,
    WishlistTemplate,
    WishlistTemplateItem,
)
from wishfund.schemas.auth import MessageResponse
from wishfund.schemas.catalog import (
    CategoryCreate,
    CategoryOut,
    CategoryUpdate,
    CuratedItemCreate,
    CuratedItemOut,
    CuratedItemPage,
    CuratedItemUpdate,
    TemplateCreate,
    TemplateItemsAdd,
    TemplateOut,
)
from wishfund.schemas.common import Pagination


categories_router = APIRouter(prefix="/categories", tags=["catalog"])
items_router = APIRouter(prefix="/curated-items", tags=["catalog"])
templates_router = APIRouter(prefix="/templates", tags=["catalog"])
logger = logging.getLogger("wishfund.catalog")


def _require_admin(user: User, what: str) -> None:
    if not user.is_admin:
        raise forbidden(f"Only admins can manage {what}")


async def _get_category(db, category_id: int) -> Category:
    category = await db.get(Category, category_id)
    if category is None:
        raise not_found("Category")
    return category


async def _name_taken(db, name: str, exclude_id: int | None = None) -> bool:
    query = select(Category.id).where(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        query = query.where(Category.id != exclude_id)
    return bool(await db.scalar(query))


# Categories


@categories_router.post("", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
async def create_category(payload: CategoryCreate, db: DbSessionDep, current_user: CurrentUser) -> CategoryOut:
    _require_admin(current_user, "categories")
    if await _name_taken(db, payload.name):
        raise AppError("Category with this name already exists")
    category = Category(name=payload.name, icon_url=payload.icon_url, is_active=True)
    db.add(category)
    await db.commit()
    await db.refresh(category)
    logger.info("Category created id=%s name=%s", category.id, category.name)
    return CategoryOut.model_validate(category)


@categories_router.get("", response_model=list[CategoryOut])
async def list_categories(db: DbSessionDep) -> list[CategoryOut]:
    result = await db.execute(select(Category).where(Category.is_active.is_(True)).order_by(Category.name.asc()))
    return [CategoryOut.model_validate(category) for category in result.scalars().all()]


@categories_router.get("/{category_id}", response_model=CategoryOut)
async def get_category(category_id: int, db: DbSessionDep) -> CategoryOut:
    return CategoryOut.model_validate(await _get_category(db, category_id))


@categories_router.patch("/{category_id}", response_model=CategoryOut)
async def update_category(
    category_id: int, payload: CategoryUpdate, db: DbSessionDep, current_user: CurrentUser
) -> CategoryOut:
    _require_admin(current_user, "categories")
    category = await _get_category(db, category_id)
    data = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in data and await _name_taken(db, data["name"], exclude_id=category.id):
        raise AppError("Category with this name already exists")
    for field, value in data.items():
        setattr(category, field, value)
    await db.commit()
    await db.refresh(category)
    return CategoryOut.model_validate(category)


@categories_router.delete("/{category_id}", response_model=MessageResponse)
async def delete_category(category_id: int, db: DbSessionDep, current_user: CurrentUser) -> MessageResponse:
    _require_admin(current_user, "categories")
    category = await _get_category(db, category_id)
    in_use = await db.scalar(select(func.count()).select_from(CuratedItem).where(CuratedItem.category_id == category.id))
    if in_use:
        raise AppError("Cannot delete category that has curated items")
    await db.delete(category)
    await db.commit()
    return MessageResponse(message="Category deleted successfully")


# Curated items


def _parse_category_ids(raw: str | None) -> list[int] | None:
    if raw is None or not raw.strip() or raw.strip().lower() == "all":
        return None
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise AppError("category_ids must be a comma-separated list of ids or 'all'") from None


def _visible_genders(viewer: User | None) -> list[str] | None:
    if viewer is None or not viewer.gender or viewer.gender == GenderEnum.PREFER_NOT_TO_SAY.value:
        return None
    return [viewer.gender, GenderEnum.PREFER_NOT_TO_SAY.value]


@items_router.post("", response_model=CuratedItemOut, status_code=status.HTTP_201_CREATED)
async def create_curated_item(payload: CuratedItemCreate, db: DbSessionDep, current_user: CurrentUser) -> CuratedItemOut:
    if not payload.image_url:
        raise AppError("Either image file or image URL is required")
    await _get_category(db, payload.category_id)

    if current_user.is_admin:
        gender = (payload.gender or GenderEnum.PREFER_NOT_TO_SAY).value
    else:
        gender = current_user.gender or GenderEnum.PREFER_NOT_TO_SAY.value
    item = CuratedItem(
        name=payload.name,
        image_url=payload.image_url,
        price=money(payload.price),
        popularity=0,
        is_active=True,
        item_type=(ItemTypeEnum.GLOBAL if current_user.is_admin else ItemTypeEnum.CUSTOM).value,
        gender=gender,
        is_public=current_user.is_admin,
        category_id=payload.category_id,
        created_by=current_user.id,
    )
    db.add(item)
    await db.commit()
    await db.refresh(item)
    logger.info("Curated item created id=%s type=%s by=%s", item.id, item.item_type, current_user.id)
    return CuratedItemOut.model_validate(item)


@items_router.get("", response_model=CuratedItemPage)
async def list_curated_items(
    db: DbSessionDep,
    viewer: OptionalUser,
    paging: PageDep,
    category_ids: str | None = Query(default=None),
    budget_min: float | None = Query(default=None),
    budget_max: float | None = Query(default=None),
) -> CuratedItemPage:
    if (budget_min is not None and budget_min < 0) or (budget_max is not None and budget_max < 0):
        raise AppError("Budget values must be zero or greater")
    if budget_min is not None and budget_max is not None and budget_min >= budget_max:
        raise AppError("budget_min must be less than budget_max")

    conditions = [CuratedItem.is_active.is_(True), CuratedItem.is_public.is_(True)]
    ids = _parse_category_ids(category_ids)
    if ids:
        conditions.append(CuratedItem.category_id.in_(ids))
    if budget_min is not None:
        conditions.append(CuratedItem.price >= budget_min)
    if budget_max is not None:
        conditions.append(CuratedItem.price <= budget_max)
    genders = _visible_genders(viewer)
    if genders:
        conditions.append(CuratedItem.gender.in_(genders))

    total = int(await db.scalar(select(func.count()).select_from(CuratedItem).where(*conditions)) or 0)
    result = await db.execute(
        select(CuratedItem)
        .where(*conditions)
        .order_by(CuratedItem.popularity.desc(), CuratedItem.id.asc())
        .offset(paging.offset)
        .limit(paging.limit)
    )
    return CuratedItemPage(
        items=[CuratedItemOut.model_validate(item) for item in result.scalars().all()],
        pagination=Pagination.build(paging.page, paging.limit, total),
    )


@items_router.get("/mine", response_model=list[CuratedItemOut])
async def my_curated_items(db: DbSessionDep, current_user: CurrentUser) -> list[CuratedItemOut]:
    result = await db.execute(
        select(CuratedItem)
        .where(CuratedItem.created_by == current_user.id, CuratedItem.item_type == ItemTypeEnum.CUSTOM.value)
        .order_by(CuratedItem.created_at.desc(), CuratedItem.id.desc())
    )
    return [CuratedItemOut.model_validate(item) for item in result.scalars().all()]


@items_router.put("/{item_id}", response_model=CuratedItemOut)
async def update_curated_item(
    item_id: int, payload: CuratedItemUpdate, db: DbSessionDep, current_user: CurrentUser
) -> CuratedItemOut:
    _require_admin(current_user, "curated items")
    item = await db.get(CuratedItem, item_id)
    if item is None:
        raise not_found("Curated item")
    data = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "category_id" in data:
        await _get_category(db, data["category_id"])
    for field, value in data.items():
        if field == "gender":
            value = value.value
        if field == "price":
            value = money(value)
        setattr(item, field, value)
    await db.commit()
    await db.refresh(item)
    return CuratedItemOut.model_validate(item)


@items_router.delete("/{item_id}", response_model=MessageResponse)
async def delete_curated_item(item_id: int, db: DbSessionDep, current_user: CurrentUser) -> MessageResponse:
    _require_admin(current_user, "curated items")
    item = await db.get(CuratedItem, item_id)
    if item is None:
        raise not_found("Curated item")
    used = await db.scalar(
        select(func.count()).select_from(WishlistItem).where(WishlistItem.curated_item_id == item.id)
    )
    if used:
        raise AppError("Cannot delete item that is being used in wishlists")
    templated = await db.scalar(
        select(func.count()).select_from(WishlistTemplateItem).where(WishlistTemplateItem.curated_item_id == item.id)
    )
    if templated:
        raise AppError("Cannot delete item that is being used in templates")
    await db.delete(item)
    await db.commit()
    return MessageResponse(message="Curated item deleted successfully")


# Templates


async def _load_template(db, template_id: int) -> WishlistTemplate:
    result = await db.execute(
        select(WishlistTemplate)
        .options(selectinload(WishlistTemplate.items))
        .where(WishlistTemplate.id == template_id)
        .execution_options(populate_existing=True)
    )
    template = result.scalar_one_or_none()
    if template is None:
        raise not_found("Template")
    return template


async def _stage_template_items(db, template_id: int, curated_ids: list[int], existing: set[int]) -> None:
    seen = set(existing)
    for curated_id in curated_ids:
        curated = await db.get(CuratedItem, curated_id)
        if curated is None:
            raise not_found("Curated item")
        if curated.id in seen:
            raise AppError(f"{curated.name} already exists in the template")
        seen.add(curated.id)
        db.add(WishlistTemplateItem(template_id=template_id, curated_item_id=curated.id))


@templates_router.post("", response_model=TemplateOut, status_code=status.HTTP_201_CREATED)
async def create_template(payload: TemplateCreate, db: DbSessionDep, current_user: CurrentUser) -> TemplateOut:
    _require_admin(current_user, "templates")
    template = WishlistTemplate(
        name=payload.name,
        emoji=payload.emoji,
        color_theme=payload.color_theme,
        created_by=current_user.id,
    )
    db.add(template)
    await db.flush()
    await _stage_template_items(db, template.id, payload.curated_item_ids, set())
    await db.commit()
    logger.info("Template created id=%s items=%d", template.id, len(payload.curated_item_ids))
    return TemplateOut.model_validate(await _load_template(db, template.id))


@templates_router.get("", response_model=list[TemplateOut])
async def list_templates(db: DbSessionDep, current_user: CurrentUser) -> list[TemplateOut]:
    _require_admin(current_user, "templates")
    result = await db.execute(
        select(WishlistTemplate)
        .options(selectinload(WishlistTemplate.items))
        .order_by(WishlistTemplate.created_at.desc(), WishlistTemplate.id.desc())
    )
    return [TemplateOut.model_validate(template) for template in result.scalars().all()]


@templates_router.get("/{template_id}", response_model=TemplateOut)
async def get_template(template_id: int, db: DbSessionDep, current_user: CurrentUser) -> TemplateOut:
    _require_admin(current_user, "templates")
    return TemplateOut.model_validate(await _load_template(db, template_id))


@templates_router.post("/{template_id}/items", response_model=TemplateOut)
async def add_template_items(
    template_id: int, payload: TemplateItemsAdd, db: DbSessionDep, current_user: CurrentUser
) -> TemplateOut:
    _require_admin(current_user, "templates")
    template = await _load_template(db, template_id)
    existing = {item.curated_item_id for item in template.items}
    await _stage_template_items(db, template.id, payload.curated_item_ids, existing)
    await db.commit()
    return TemplateOut.model_validate(await _load_template(db, template.id))


routers = (categories_router, items_router, templates_router)
