from __future__ import annotations

# ruff: noqa: B008
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from trackmystartup.api.deps import get_gateway, get_reconciler, request_context, require_roles
from trackmystartup.database import get_db
from trackmystartup.lifecycle.errors import PermissionDeniedError
from trackmystartup.lifecycle.notifications import success_notification
from trackmystartup.lifecycle.projection import apply_filters, startup_visible_co_investment
from trackmystartup.lifecycle.reconciler import LifecycleReconciler
from trackmystartup.lifecycle.records import InvestmentOffer, Principal
from trackmystartup.lifecycle.status_model import EntityType, UserRole
from trackmystartup.schemas.lifecycle import NotificationRead, OfferActionRead, OfferRead
from trackmystartup.services.audit import audit_event
from trackmystartup.services.sql_gateway import SqlMutationGateway

router = APIRouter(tags=["offers"])

_startup_dep = require_roles(UserRole.startup)


async def _load(gateway: SqlMutationGateway, entity: EntityType, offer_id: str) -> InvestmentOffer:
    return InvestmentOffer.from_row(await gateway.fetch_record(entity, offer_id))


async def _respond(
    action: str,
    offer: InvestmentOffer,
    *,
    request: Request,
    db: Session,
    principal: Principal,
    entity: EntityType,
) -> OfferActionRead:
    await run_in_threadpool(
        audit_event,
        action,
        principal.user_id,
        {"status": offer.status.value, "stage": offer.stage},
        db=db,
        entity=entity.value,
        record_id=offer.id,
        **request_context(request),
    )
    return OfferActionRead(
        record=OfferRead.model_validate(offer),
        notification=NotificationRead.model_validate(success_notification(action)),
    )


@router.get("/offers", response_model=list[OfferRead])
def list_offers(
    startup_id: str = Query(...),
    gateway: SqlMutationGateway = Depends(get_gateway),
    principal: Principal = Depends(_startup_dep),
):
    if not principal.owns_startup(startup_id):
        raise PermissionDeniedError(action="list_offers", role=principal.role.value)

    offers = [
        InvestmentOffer.from_row(row)
        for entity in (EntityType.investment_offer, EntityType.co_investment_offer)
        for row in gateway.list_rows(entity, startup_id=startup_id)
    ]
    visible = apply_filters(offers, startup_visible_co_investment())
    visible.sort(key=lambda o: (o.created_at is None, o.created_at), reverse=True)
    return [OfferRead.model_validate(o) for o in visible]


@router.post("/offers/{offer_id}/accept", response_model=OfferActionRead)
async def accept_investment_offer(
    offer_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(_startup_dep),
):
    entity = EntityType.investment_offer
    offer = await reconciler.accept_investment_offer(principal, await _load(gateway, entity, offer_id))
    return await _respond("accept_investment_offer", offer, request=request, db=db, principal=principal, entity=entity)


@router.post("/offers/{offer_id}/reject", response_model=OfferActionRead)
async def reject_investment_offer(
    offer_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(_startup_dep),
):
    entity = EntityType.investment_offer
    offer = await reconciler.reject_investment_offer(principal, await _load(gateway, entity, offer_id))
    return await _respond("reject_investment_offer", offer, request=request, db=db, principal=principal, entity=entity)


async def _delete(
    entity: EntityType,
    offer_id: str,
    *,
    request: Request,
    db: Session,
    gateway: SqlMutationGateway,
    reconciler: LifecycleReconciler,
    principal: Principal,
) -> NotificationRead:
    offer = await _load(gateway, entity, offer_id)
    await reconciler.delete_investment_offer(principal, offer)
    await run_in_threadpool(
        audit_event,
        "delete_investment_offer",
        principal.user_id,
        {"status": offer.status.value, "stage": offer.stage},
        db=db,
        entity=entity.value,
        record_id=offer.id,
        **request_context(request),
    )
    return NotificationRead.model_validate(success_notification("delete_investment_offer"))


@router.delete("/offers/{offer_id}", status_code=status.HTTP_200_OK, response_model=NotificationRead)
async def delete_investment_offer(
    offer_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(_startup_dep),
):
    return await _delete(
        EntityType.investment_offer,
        offer_id,
        request=request,
        db=db,
        gateway=gateway,
        reconciler=reconciler,
        principal=principal,
    )


@router.delete(
    "/co-investment-offers/{offer_id}", status_code=status.HTTP_200_OK, response_model=NotificationRead
)
async def delete_co_investment_offer(
    offer_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(_startup_dep),
):
    return await _delete(
        EntityType.co_investment_offer,
        offer_id,
        request=request,
        db=db,
        gateway=gateway,
        reconciler=reconciler,
        principal=principal,
    )


@router.post("/co-investment-offers/{offer_id}/accept", response_model=OfferActionRead)
async def accept_co_investment_offer(
    offer_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(_startup_dep),
):
    entity = EntityType.co_investment_offer
    offer = await reconciler.accept_investment_offer(principal, await _load(gateway, entity, offer_id))
    return await _respond("accept_co_investment_offer", offer, request=request, db=db, principal=principal, entity=entity)


@router.post("/co-investment-offers/{offer_id}/reject", response_model=OfferActionRead)
async def reject_co_investment_offer(
    offer_id: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: SqlMutationGateway = Depends(get_gateway),
    reconciler: LifecycleReconciler = Depends(get_reconciler),
    principal: Principal = Depends(_startup_dep),
):
    entity = EntityType.co_investment_offer
    offer = await reconciler.reject_investment_offer(principal, await _load(gateway, entity, offer_id))
    return await _respond("reject_co_investment_offer", offer, request=request, db=db, principal=principal, entity=entity)
