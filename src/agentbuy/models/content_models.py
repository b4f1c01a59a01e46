"""
# Content Models

Admin-managed display content:

- **Banner**: hero slides (video, image or link) targeted at all users, buyers or agents.
- **ProductShowcase**: curated product groups shown on the landing page.
- **AgentSpecialty**: the vocabulary agents pick their specialties from.
- **Cargo**: shipping/product categories orders are routed by.

Create models validate full documents; update models make every field optional and are
applied with `model_dump(exclude_unset=True)` so omitted fields stay untouched.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class BannerType(str, Enum):
    VIDEO = "video"
    IMAGE = "image"
    LINK = "link"


class TargetAudience(str, Enum):
    ALL = "all"
    USER = "user"
    AGENT = "agent"


class ShowcaseBadge(str, Enum):
    IN_STOCK = "belen"
    PRE_ORDER = "zahialgaar"


class BannerCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    subtitle: Optional[str] = Field(None, max_length=500)
    type: BannerType = BannerType.IMAGE
    url: str = Field(..., min_length=1, description="Media or link URL")
    thumbnail_url: Optional[str] = None
    is_active: bool = True
    order: int = Field(0, description="Sort key, ascending")
    target_audience: TargetAudience = TargetAudience.ALL

    @field_validator("title", "url", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class BannerUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    subtitle: Optional[str] = Field(None, max_length=500)
    type: Optional[BannerType] = None
    url: Optional[str] = Field(None, min_length=1)
    thumbnail_url: Optional[str] = None
    is_active: Optional[bool] = None
    order: Optional[int] = None
    target_audience: Optional[TargetAudience] = None


class ShowcaseProduct(BaseModel):
    name: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)
    price: Optional[str] = None
    link: Optional[str] = None
    badge: Optional[ShowcaseBadge] = None


class ProductShowcaseCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    products: List[ShowcaseProduct] = Field(default_factory=list)
    is_active: bool = True
    order: int = 0


class ProductShowcaseUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    products: Optional[List[ShowcaseProduct]] = None
    is_active: Optional[bool] = None
    order: Optional[int] = None


class AgentSpecialtyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    name_en: Optional[str] = Field(None, max_length=100)
    icon: Optional[str] = None
    description: Optional[str] = Field(None, max_length=200)
    is_active: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class AgentSpecialtyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    name_en: Optional[str] = Field(None, max_length=100)
    icon: Optional[str] = None
    description: Optional[str] = Field(None, max_length=200)
    is_active: Optional[bool] = None
    order: Optional[int] = None


class CargoCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class CargoUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None


DEFAULT_CARGOS: List[CargoCreate] = [
    CargoCreate(name="Хувцас", description="Хувцас, гутал"),
    CargoCreate(name="Гоо сайхны бүтээгдэхүүн", description="Гоо сайхны бүтээгдэхүүн"),
    CargoCreate(name="Цахилгаан бараа", description="Цахилгаан бараа, техник"),
    CargoCreate(name="Гэрийн хэрэглэл", description="Гэрийн хэрэглэл"),
    CargoCreate(name="Бусад", description="Бусад бараа"),
]
