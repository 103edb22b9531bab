from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ...schemas import ItemCreate, ItemOut, ItemStatus, ItemUpdate, StatusTransition, TransitionResult
from ...utils import week_key
from ..repositories import ItemRepository, get_repository

router = APIRouter(
    prefix="/api/v1/items",
    tags=["items"],
)


def _get_repo(repo: ItemRepository = Depends(get_repository)) -> ItemRepository:
    """
    Dependency wrapper for repository to keep signatures clean.
    """
    return repo


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=List[ItemOut],
    summary="List Items",
    description=(
        "List items for one week, newest first.\n\n"
        "Query parameters:\n"
        "- status: active (default), archived or deleted\n"
        "- week_of: Monday (YYYY-MM-DD) of the week; defaults to the current week"
    ),
)
def list_items(
    status_filter: ItemStatus = Query(ItemStatus.ACTIVE, alias="status", description="Filter by status"),
    week_of: Optional[str] = Query(None, description="Monday (YYYY-MM-DD) of the week"),
    repo: ItemRepository = Depends(_get_repo),
) -> List[ItemOut]:
    """
    List items of a week filtered by status.
    """
    return repo.list(status=status_filter, week_of=week_of or week_key())


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=ItemOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Item",
    description="Create a new item. A client-supplied week_of is kept as is.",
    responses={
        201: {"description": "Item created successfully"},
        422: {"description": "Validation error"},
    },
)
def create_item(payload: ItemCreate, repo: ItemRepository = Depends(_get_repo)) -> ItemOut:
    """
    Create a new item.
    """
    return repo.create(payload)


# PUBLIC_INTERFACE
@router.post(
    "/transitions",
    response_model=TransitionResult,
    summary="Transition Week",
    description="Move every item of a week from one status to another (used to archive a week).",
)
def transition_items(payload: StatusTransition, repo: ItemRepository = Depends(_get_repo)) -> TransitionResult:
    """
    Bulk status transition for one week.
    """
    return TransitionResult(count=repo.transition(payload))


# PUBLIC_INTERFACE
@router.get(
    "/{item_id}",
    response_model=ItemOut,
    summary="Get Item",
    description="Get a single item by ID.",
    responses={
        200: {"description": "Item found"},
        404: {"description": "Item not found"},
    },
)
def get_item(item_id: str, repo: ItemRepository = Depends(_get_repo)) -> ItemOut:
    """
    Retrieve a single item by its ID.
    """
    item = repo.get(item_id)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return item


# PUBLIC_INTERFACE
@router.patch(
    "/{item_id}",
    response_model=ItemOut,
    summary="Update Item",
    description="Partially update fields of an item.",
    responses={
        200: {"description": "Item updated"},
        404: {"description": "Item not found"},
    },
)
def patch_item(item_id: str, payload: ItemUpdate, repo: ItemRepository = Depends(_get_repo)) -> ItemOut:
    """
    Partial update of an item.
    """
    updated = repo.update(item_id, payload)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return updated


# PUBLIC_INTERFACE
@router.delete(
    "/{item_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Item",
    description="Soft-delete an item by ID (its status becomes 'deleted').",
    responses={
        204: {"description": "Item deleted"},
        404: {"description": "Item not found"},
    },
)
def delete_item(item_id: str, repo: ItemRepository = Depends(_get_repo)) -> Response:
    """
    Soft-delete an item. Returns 204 on success, 404 if not found.
    """
    if not repo.soft_delete(item_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
