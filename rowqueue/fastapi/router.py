from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from ..exceptions import InvalidArgument, StoreUnavailable
from ..manager import QueueManager
from ..models import Item, ItemStatus
from ..store.base import ItemStore
from .deps import get_item_store, get_queue_manager
from .schemas import (
    CountsResponse,
    EnqueueRequest,
    EnqueueResponse,
    ItemResponse,
    ListItemsResponse,
    SetStatusRequest,
)


def _map_item(item: Item) -> ItemResponse:
    """Map Item to ItemResponse."""
    return ItemResponse(**item.to_dict())


def _parse_status(value: str | None) -> ItemStatus | None:
    if value is None:
        return None
    try:
        return ItemStatus.parse(value)
    except InvalidArgument as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def get_router() -> APIRouter:
    """Get FastAPI router for item endpoints."""
    router = APIRouter(prefix="/items", tags=["Items"])

    @router.post("", response_model=EnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
    async def enqueue_item(
        body: EnqueueRequest,
        request: Request,
        store: ItemStore = Depends(get_item_store),
    ) -> EnqueueResponse:
        """Append a new item."""
        try:
            item_id = await store.enqueue(
                body.routing_key, content=body.content, metadata=body.metadata
            )
        except InvalidArgument as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except StoreUnavailable as e:
            raise HTTPException(status_code=503, detail=str(e)) from e
        listing = request.url_for("list_items").include_query_params(routing_key=body.routing_key)
        return EnqueueResponse(id=item_id, links={"self": str(listing)})

    @router.post("/claim", response_model=ItemResponse)
    async def claim_item(
        routing_key: str | None = Query(default=None),
        store: ItemStore = Depends(get_item_store),
    ):
        """Claim the next New item; 204 when nothing is waiting."""
        try:
            item = await store.claim(routing_key)
        except StoreUnavailable as e:
            raise HTTPException(status_code=503, detail=str(e)) from e
        if item is None:
            return Response(status_code=status.HTTP_204_NO_CONTENT)
        return _map_item(item)

    @router.get("", response_model=ListItemsResponse)
    async def list_items(
        routing_key: str | None = Query(default=None),
        status_filter: str | None = Query(default=None, alias="status"),
        limit: int | None = Query(default=None, ge=1, le=10000),
        manager: QueueManager = Depends(get_queue_manager),
    ) -> ListItemsResponse:
        """List items with optional filters."""
        s = _parse_status(status_filter)
        try:
            items = await manager.get_items(routing_key, s, limit=limit)
        except StoreUnavailable as e:
            raise HTTPException(status_code=503, detail=str(e)) from e
        return ListItemsResponse(items=[_map_item(i) for i in items], total=len(items))

    @router.post("/status", status_code=status.HTTP_204_NO_CONTENT)
    async def set_status(
        body: SetStatusRequest,
        manager: QueueManager = Depends(get_queue_manager),
    ) -> Response:
        """Set status for a batch of items."""
        try:
            await manager.update_status(body.ids, body.status, body.error)
        except InvalidArgument as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except StoreUnavailable as e:
            raise HTTPException(status_code=503, detail=str(e)) from e
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.get("/_counts", response_model=CountsResponse)
    async def counts(
        routing_key: str | None = Query(default=None),
        manager: QueueManager = Depends(get_queue_manager),
    ) -> CountsResponse:
        """Number of items per status."""
        try:
            c = await manager.counts(routing_key)
        except StoreUnavailable as e:
            raise HTTPException(status_code=503, detail=str(e)) from e
        return CountsResponse(**{s.name: n for s, n in c.items()})

    @router.get("/_health")
    async def health_check(manager: QueueManager = Depends(get_queue_manager)):
        """Health check endpoint."""
        return {"status": "healthy", "service": "rowqueue"}

    return router
