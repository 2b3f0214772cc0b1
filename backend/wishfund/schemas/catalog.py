from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from wishfund.models.models import GenderEnum
from wishfund.schemas.common import Pagination


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class CategoryCreate(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    icon_url: str | None = Field(default=None, max_length=512)

    @field_validator("name")
    @classmethod
    def _name_lower(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("icon_url")
    @classmethod
    def _icon_strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class CategoryUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=120)
    icon_url: str | None = Field(default=None, max_length=512)
    is_active: bool | None = None

    @field_validator("name")
    @classmethod
    def _name_lower(cls, value: str | None) -> str | None:
        normalized = _strip_or_none(value)
        return normalized.lower() if normalized else None


class CategoryOut(BaseModel):
    id: int
    name: str
    icon_url: str | None = None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class CuratedItemCreate(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    image_url: str | None = Field(default=None, max_length=2048)
    price: float = Field(gt=0)
    category_id: int
    gender: GenderEnum | None = None

    @field_validator("name")
    @classmethod
    def _name_strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("image_url")
    @classmethod
    def _image_strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class CuratedItemUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=255)
    image_url: str | None = Field(default=None, max_length=2048)
    price: float | None = Field(default=None, gt=0)
    category_id: int | None = None
    gender: GenderEnum | None = None
    is_active: bool | None = None
    is_public: bool | None = None


class CuratedItemOut(BaseModel):
    id: int
    name: str
    image_url: str
    price: float
    popularity: int
    is_active: bool
    item_type: str
    gender: str
    is_public: bool
    category_id: int
    created_by: int | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CuratedItemPage(BaseModel):
    items: list[CuratedItemOut]
    pagination: Pagination


class TemplateCreate(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    emoji: str | None = Field(default=None, max_length=16)
    color_theme: str | None = Field(default=None, max_length=32)
    curated_item_ids: list[int] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _name_strip(cls, value: str) -> str:
        return value.strip()


class TemplateItemsAdd(BaseModel):
    curated_item_ids: list[int] = Field(min_length=1)


class TemplateItemOut(BaseModel):
    id: int
    curated_item: CuratedItemOut

    model_config = {"from_attributes": True}


class TemplateOut(BaseModel):
    id: int
    name: str
    emoji: str | None = None
    color_theme: str | None = None
    created_at: datetime
    items: list[TemplateItemOut] = []

    model_config = {"from_attributes": True}
