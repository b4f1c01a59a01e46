"""
# Content Routes

Banners and product showcases have a public `active` listing and admin-only CRUD plus a
`toggle` endpoint that flips `is_active`. Cargo categories are readable by any signed-in user.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from agentbuy.models.common import serialize_document
from agentbuy.models.content_models import (
    BannerCreate,
    BannerUpdate,
    ProductShowcaseCreate,
    ProductShowcaseUpdate,
    TargetAudience,
)
from agentbuy.routes.dependencies import get_content_service, get_current_user, require_admin
from agentbuy.services.content_service import ContentService

banners_router = APIRouter(prefix="/api/banners", tags=["Content"])
showcases_router = APIRouter(prefix="/api/showcases", tags=["Content"])
cargos_router = APIRouter(prefix="/api/cargos", tags=["Content"])


def _serialize_all(items):
    return [serialize_document(item) for item in items]


# --- Banners ---


@banners_router.get("/active")
async def active_banners(
    audience: Optional[TargetAudience] = Query(None, description="Viewer role; omit for anonymous visitors"),
    content_service: ContentService = Depends(get_content_service),
):
    return _serialize_all(await content_service.get_active_banners(audience.value if audience else None))


@banners_router.get("", dependencies=[Depends(require_admin)])
async def list_banners(content_service: ContentService = Depends(get_content_service)):
    return _serialize_all(await content_service.banners.list())


@banners_router.post("", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_admin)])
async def create_banner(payload: BannerCreate, content_service: ContentService = Depends(get_content_service)):
    return serialize_document(await content_service.create_banner(payload))


@banners_router.put("/{banner_id}", dependencies=[Depends(require_admin)])
async def update_banner(
    banner_id: str, payload: BannerUpdate, content_service: ContentService = Depends(get_content_service)
):
    return serialize_document(await content_service.banners.update(banner_id, payload))


@banners_router.patch("/{banner_id}/toggle", dependencies=[Depends(require_admin)])
async def toggle_banner(banner_id: str, content_service: ContentService = Depends(get_content_service)):
    return serialize_document(await content_service.banners.toggle(banner_id))


@banners_router.delete("/{banner_id}", dependencies=[Depends(require_admin)])
async def delete_banner(banner_id: str, content_service: ContentService = Depends(get_content_service)):
    await content_service.banners.delete(banner_id)
    return {"message": "Banner deleted"}


# --- Product showcases ---


@showcases_router.get("/active")
async def active_showcases(content_service: ContentService = Depends(get_content_service)):
    return _serialize_all(await content_service.get_active_showcases())


@showcases_router.get("", dependencies=[Depends(require_admin)])
async def list_showcases(content_service: ContentService = Depends(get_content_service)):
    return _serialize_all(await content_service.showcases.list())


@showcases_router.post("", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_admin)])
async def create_showcase(
    payload: ProductShowcaseCreate, content_service: ContentService = Depends(get_content_service)
):
    return serialize_document(await content_service.create_showcase(payload))


@showcases_router.put("/{showcase_id}", dependencies=[Depends(require_admin)])
async def update_showcase(
    showcase_id: str, payload: ProductShowcaseUpdate, content_service: ContentService = Depends(get_content_service)
):
    return serialize_document(await content_service.showcases.update(showcase_id, payload))


@showcases_router.patch("/{showcase_id}/toggle", dependencies=[Depends(require_admin)])
async def toggle_showcase(showcase_id: str, content_service: ContentService = Depends(get_content_service)):
    return serialize_document(await content_service.showcases.toggle(showcase_id))


@showcases_router.delete("/{showcase_id}", dependencies=[Depends(require_admin)])
async def delete_showcase(showcase_id: str, content_service: ContentService = Depends(get_content_service)):
    await content_service.showcases.delete(showcase_id)
    return {"message": "Showcase deleted"}


# --- Cargos ---


@cargos_router.get("")
async def list_cargos(
    current_user: Dict[str, Any] = Depends(get_current_user),
    content_service: ContentService = Depends(get_content_service),
):
    return _serialize_all(await content_service.cargos.list())
