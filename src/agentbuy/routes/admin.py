"""
# Admin Routes

Agent management, review moderation, ledger reconciliation and the cargo and specialty
vocabularies. Every endpoint requires the `admin` role.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, status

from agentbuy.models.common import serialize_document
from agentbuy.models.content_models import AgentSpecialtyCreate, AgentSpecialtyUpdate, CargoCreate, CargoUpdate
from agentbuy.models.review_models import ReviewApprovalRequest
from agentbuy.models.user_models import AddAgentRequest, ApproveAgentRequest, UpdateAgentRankRequest
from agentbuy.routes.dependencies import (
    get_admin_service,
    get_card_service,
    get_content_service,
    get_review_service,
    require_admin,
)
from agentbuy.services.admin_service import AdminService
from agentbuy.services.card_service import CardService
from agentbuy.services.content_service import ContentService
from agentbuy.services.review_service import ReviewService

router = APIRouter(prefix="/api/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


# --- Agents ---


@router.get("/agents")
async def list_agents(admin_service: AdminService = Depends(get_admin_service)):
    return [serialize_document(agent) for agent in await admin_service.get_agents()]


@router.post("/agents", status_code=status.HTTP_201_CREATED)
async def add_agent(
    payload: AddAgentRequest,
    current_user: Dict[str, Any] = Depends(require_admin),
    admin_service: AdminService = Depends(get_admin_service),
):
    agent = await admin_service.add_agent(payload.email, str(current_user["_id"]))
    return {"message": "Agent added successfully", "agent": serialize_document(agent)}


@router.put("/agents/{agent_id}/approve")
async def approve_agent(
    agent_id: str,
    payload: ApproveAgentRequest,
    current_user: Dict[str, Any] = Depends(require_admin),
    admin_service: AdminService = Depends(get_admin_service),
):
    agent = await admin_service.approve_agent(agent_id, payload.approved, str(current_user["_id"]))
    return {
        "message": "Agent approved" if payload.approved else "Agent approval revoked",
        "agent": serialize_document(agent),
    }


@router.put("/agents/{agent_id}/rank")
async def update_agent_rank(
    agent_id: str,
    payload: UpdateAgentRankRequest,
    review_service: ReviewService = Depends(get_review_service),
):
    return await review_service.update_agent_rank(agent_id, payload.rank)


# --- Reviews ---


@router.get("/reviews")
async def list_reviews(review_service: ReviewService = Depends(get_review_service)):
    return [serialize_document(review) for review in await review_service.list_reviews()]


@router.put("/reviews/{review_id}/approve")
async def approve_review(
    review_id: str,
    payload: ReviewApprovalRequest,
    review_service: ReviewService = Depends(get_review_service),
):
    return serialize_document(await review_service.approve_review(review_id, payload.approved))


@router.delete("/reviews/{review_id}")
async def delete_review(review_id: str, review_service: ReviewService = Depends(get_review_service)):
    await review_service.delete_review(review_id)
    return {"message": "Review deleted"}


# --- Research cards ---


@router.get("/cards/reconcile")
async def reconcile_cards(
    fix: bool = Query(False, description="Overwrite drifted balances with the ledger value"),
    card_service: CardService = Depends(get_card_service),
):
    report = await card_service.reconcile_balances(fix=fix)
    return report.model_dump(exclude={"ledger_totals"})


# --- Cargos ---


@router.get("/cargos")
async def list_cargos(content_service: ContentService = Depends(get_content_service)):
    return [serialize_document(c) for c in await content_service.cargos.list()]


@router.post("/cargos", status_code=status.HTTP_201_CREATED)
async def create_cargo(payload: CargoCreate, content_service: ContentService = Depends(get_content_service)):
    return serialize_document(await content_service.create_cargo(payload))


@router.put("/cargos/{cargo_id}")
async def update_cargo(
    cargo_id: str, payload: CargoUpdate, content_service: ContentService = Depends(get_content_service)
):
    return serialize_document(await content_service.cargos.update(cargo_id, payload))


@router.delete("/cargos/{cargo_id}")
async def delete_cargo(cargo_id: str, content_service: ContentService = Depends(get_content_service)):
    await content_service.cargos.delete(cargo_id)
    return {"message": "Cargo deleted"}


# --- Agent specialties ---


@router.get("/specialties")
async def list_specialties(content_service: ContentService = Depends(get_content_service)):
    return [serialize_document(s) for s in await content_service.specialties.list()]


@router.post("/specialties", status_code=status.HTTP_201_CREATED)
async def create_specialty(
    payload: AgentSpecialtyCreate, content_service: ContentService = Depends(get_content_service)
):
    return serialize_document(await content_service.create_specialty(payload))


@router.put("/specialties/{specialty_id}")
async def update_specialty(
    specialty_id: str, payload: AgentSpecialtyUpdate, content_service: ContentService = Depends(get_content_service)
):
    return serialize_document(await content_service.specialties.update(specialty_id, payload))


@router.delete("/specialties/{specialty_id}")
async def delete_specialty(specialty_id: str, content_service: ContentService = Depends(get_content_service)):
    await content_service.specialties.delete(specialty_id)
    return {"message": "Specialty deleted"}
