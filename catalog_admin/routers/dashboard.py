"""
catalog_admin/routers/dashboard.py - Catalog admin JSON API
Mounted under /api/dashboard. One sub-router per catalog entity:

    GET    /<path>                  list (cached)            AUTHENTICATED_API
    GET    /<path>/{item_id}        detail (cached)          AUTHENTICATED_API
    POST   /<path>/add              create + invalidate      CONTENT_API
    PUT    /<path>/{item_id}/edit   update + invalidate      CONTENT_API, per record
    DELETE /<path>/{item_id}/delete delete + invalidate      CONTENT_API, per record

Orders and users are read-only apart from PUT /orders/{item_id}/update-payment
(CONTENT_API, per record). GET /stats serves the cached dashboard summary.

Every route requires dual auth. DataSourceError / NotFoundError are mapped
to 503 / 404 by the app-level handlers in main.py.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel

from catalog_admin.core.auth import dual_auth
from catalog_admin.core.rate_limiter import RateLimitGuard
from catalog_admin.models import (
    ApplicationCreate,
    ApplicationUpdate,
    ArticleCreate,
    ArticleUpdate,
    CacheName,
    DetailResponse,
    Entity,
    ListResponse,
    MutationResponse,
    OrderPaymentUpdate,
    PlatformCreate,
    PlatformUpdate,
    RouteClass,
    TemplateCreate,
    TemplateUpdate,
)
from catalog_admin.services.catalog_service import ENTITY_CACHE_LAYOUT, CatalogService

NO_STORE = "no-store"


def _service(request: Request) -> CatalogService:
    return request.app.state.catalog_service


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def _set_read_headers(
    request: Request,
    response: Response,
    cache_name: str,
    from_cache: bool,
) -> None:
    response.headers["X-Cache-Status"] = "HIT" if from_cache else "MISS"
    response.headers.update(request.app.state.cache_registry.get_cache_headers(cache_name))


def build_read_router(entity: Entity, path: str) -> APIRouter:
    """Cached list and detail routes; read-only entities stop here."""
    router = APIRouter(prefix=f"/{path}", dependencies=[Depends(dual_auth)])
    layout = ENTITY_CACHE_LAYOUT[entity.value]
    label = entity.value

    # ── Reads ─────────────────────────────────────────────────────────────────

    @router.get(
        "",
        response_model=ListResponse,
        dependencies=[Depends(RateLimitGuard(RouteClass.AUTHENTICATED_API, f"list_{path}"))],
    )
    def list_items(request: Request, response: Response) -> ListResponse:
        result = _service(request).list_records(label)
        _set_read_headers(request, response, layout.list_cache, result.from_cache)
        return ListResponse(
            items=result.data,
            count=len(result.data),
            from_cache=result.from_cache,
            request_id=_request_id(request),
        )

    @router.get(
        "/{item_id}",
        response_model=DetailResponse,
        dependencies=[Depends(RateLimitGuard(RouteClass.AUTHENTICATED_API, f"view_{label}"))],
    )
    def get_item(item_id: int, request: Request, response: Response) -> DetailResponse:
        result = _service(request).get_record(label, item_id)
        _set_read_headers(request, response, layout.detail_cache, result.from_cache)
        return DetailResponse(
            item=result.data,
            from_cache=result.from_cache,
            request_id=_request_id(request),
        )

    return router


def build_entity_router(
    entity: Entity,
    path: str,
    create_model: type[BaseModel],
    update_model: type[BaseModel],
) -> APIRouter:
    router = build_read_router(entity, path)
    label = entity.value

    # ── Mutations ─────────────────────────────────────────────────────────────

    @router.post(
        "/add",
        response_model=MutationResponse,
        status_code=status.HTTP_201_CREATED,
        dependencies=[Depends(RateLimitGuard(RouteClass.CONTENT_API, f"add_{label}"))],
    )
    def add_item(body: create_model, request: Request, response: Response) -> MutationResponse:
        result = _service(request).create_record(label, body.model_dump())
        response.headers["Cache-Control"] = NO_STORE
        return MutationResponse(
            message=f"{label.capitalize()} created",
            id=result.record["id"],
            invalidated=result.invalidated,
            request_id=_request_id(request),
        )

    @router.put(
        "/{item_id}/edit",
        response_model=MutationResponse,
        dependencies=[Depends(RateLimitGuard(RouteClass.CONTENT_API, f"edit_{label}", "item_id"))],
    )
    def edit_item(
        item_id: int,
        body: update_model,
        request: Request,
        response: Response,
    ) -> MutationResponse:
        changes = body.model_dump(exclude_unset=True)
        if not changes:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No fields to update.",
            )
        result = _service(request).update_record(label, item_id, changes)
        response.headers["Cache-Control"] = NO_STORE
        return MutationResponse(
            message=f"{label.capitalize()} updated",
            id=item_id,
            invalidated=result.invalidated,
            request_id=_request_id(request),
        )

    @router.delete(
        "/{item_id}/delete",
        response_model=MutationResponse,
        dependencies=[Depends(RateLimitGuard(RouteClass.CONTENT_API, f"delete_{label}", "item_id"))],
    )
    def delete_item(item_id: int, request: Request, response: Response) -> MutationResponse:
        result = _service(request).delete_record(label, item_id)
        response.headers["Cache-Control"] = NO_STORE
        return MutationResponse(
            message=f"{label.capitalize()} deleted",
            id=item_id,
            invalidated=result.invalidated,
            request_id=_request_id(request),
        )

    return router


# ── Entity routers ────────────────────────────────────────────────────────────

templates_router = build_entity_router(Entity.TEMPLATE, "templates", TemplateCreate, TemplateUpdate)
applications_router = build_entity_router(
    Entity.APPLICATION, "applications", ApplicationCreate, ApplicationUpdate,
)
platforms_router = build_entity_router(Entity.PLATFORM, "platforms", PlatformCreate, PlatformUpdate)
blog_router = build_entity_router(Entity.ARTICLE, "blog", ArticleCreate, ArticleUpdate)


@blog_router.get(
    "/{item_id}/edit",
    response_model=DetailResponse,
    dependencies=[Depends(RateLimitGuard(RouteClass.AUTHENTICATED_API, "edit_view_article"))],
)
def get_article_for_edit(item_id: int, request: Request, response: Response) -> DetailResponse:
    """Article as loaded into the edit form; short-lived cache of its own."""
    result = _service(request).get_article_for_edit(item_id)
    _set_read_headers(request, response, CacheName.EDIT_ARTICLE.value, result.from_cache)
    return DetailResponse(
        item=result.data,
        from_cache=result.from_cache,
        request_id=_request_id(request),
    )


orders_router = build_read_router(Entity.ORDER, "orders")


@orders_router.put(
    "/{item_id}/update-payment",
    response_model=MutationResponse,
    dependencies=[Depends(RateLimitGuard(RouteClass.CONTENT_API, "update_payment_order", "item_id"))],
)
def update_order_payment(
    item_id: int,
    body: OrderPaymentUpdate,
    request: Request,
    response: Response,
) -> MutationResponse:
    result = _service(request).update_order_payment(item_id, body.order_payment_status)
    response.headers["Cache-Control"] = NO_STORE
    return MutationResponse(
        message=f"Order payment status set to {body.order_payment_status}",
        id=item_id,
        invalidated=result.invalidated,
        request_id=_request_id(request),
    )


users_router = build_read_router(Entity.USER, "users")

stats_router = APIRouter(prefix="/stats", dependencies=[Depends(dual_auth)])


@stats_router.get(
    "",
    response_model=DetailResponse,
    dependencies=[Depends(RateLimitGuard(RouteClass.AUTHENTICATED_API, "view_stats"))],
)
def get_dashboard_stats(request: Request, response: Response) -> DetailResponse:
    result = _service(request).get_dashboard_stats()
    _set_read_headers(request, response, CacheName.DASHBOARD_STATS.value, result.from_cache)
    return DetailResponse(
        item=result.data,
        from_cache=result.from_cache,
        request_id=_request_id(request),
    )


router = APIRouter()
for _entity_router in (
    templates_router,
    applications_router,
    platforms_router,
    blog_router,
    orders_router,
    users_router,
    stats_router,
):
    router.include_router(_entity_router)
