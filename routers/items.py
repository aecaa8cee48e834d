import asyncio
import logging
from typing import List, Literal, Optional

from fastapi import (
    APIRouter,
    File,
    Form,
    HTTPException,
    Response,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from pydantic import ValidationError
from sqlalchemy import or_
from sqlmodel import Session, col, select

from db import SessionDep
from models import Item, utcnow
from realtime import DELETE, INSERT, UPDATE, ItemFeedDep, item_feed
from schemas import ItemCreate, ItemRead, ItemUpdate, first_error
from storage import ImageStoreDep, StorageError
from workflow import can_contact, find_request, whatsapp_link
from .auth import CurrentUserRoleDep, OptionalUserRoleDep
from .users import delete_item_cascade

logger = logging.getLogger(__name__)

router = APIRouter(tags=["items"])

SortOrder = Literal["newest", "price_low", "price_high"]


def get_item_or_404(session: Session, item_id: int) -> Item:
    item = session.get(Item, item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found")
    return item


def _ensure_owner(item: Item, user) -> None:
    if item.posted_by != user.id:
        raise HTTPException(status_code=403, detail="You can only change items you posted.")


async def _store_upload(images, upload: UploadFile):
    data = await upload.read()
    try:
        return images.save(data, upload.filename, upload.content_type)
    except StorageError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.websocket("/feed")
async def items_feed(websocket: WebSocket):
    """Push a change event for every insert/update/delete on items."""
    queue = item_feed.subscribe()
    await websocket.accept()

    async def forward() -> None:
        while True:
            await websocket.send_json(await queue.get())

    sender = asyncio.create_task(forward())
    try:
        while True:
            # clients never talk; this only notices the disconnect
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        item_feed.unsubscribe(queue)


@router.get("/", response_model=List[ItemRead])
def list_items(
    session: SessionDep,
    current: OptionalUserRoleDep,
    search: Optional[str] = None,
    category: Optional[str] = None,
    include_donated: bool = True,
    sort: SortOrder = "newest",
    limit: int = 50,
    offset: int = 0,
):
    """
    List items, optionally filtered by search text and category.
    Flagged items are only visible to admins.
    """
    query = select(Item)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(
            or_(col(Item.name).ilike(pattern), col(Item.description).ilike(pattern))
        )

    if category and category != "All":
        query = query.where(Item.category == category)

    if not include_donated:
        query = query.where(Item.is_donated == False)  # noqa: E712

    if not current or current["role"] != "admin":
        query = query.where(Item.is_flagged == False)  # noqa: E712

    if sort == "price_low":
        query = query.order_by(col(Item.price).asc(), col(Item.created_at).desc())
    elif sort == "price_high":
        query = query.order_by(col(Item.price).desc(), col(Item.created_at).desc())
    else:
        query = query.order_by(col(Item.created_at).desc(), col(Item.id).desc())

    query = query.offset(max(offset, 0)).limit(min(max(limit, 1), 100))
    return session.exec(query).all()


@router.get("/mine", response_model=List[ItemRead])
def my_items(session: SessionDep, current: CurrentUserRoleDep):
    user = current["user"]
    return session.exec(
        select(Item)
        .where(Item.posted_by == user.id)
        .order_by(col(Item.created_at).desc(), col(Item.id).desc())
    ).all()


@router.get("/{item_id}", response_model=ItemRead)
def get_item(item_id: int, session: SessionDep):
    """
    Get a single item by ID.
    """
    return get_item_or_404(session, item_id)


@router.post("/", response_model=ItemRead, status_code=201)
async def create_item(
    session: SessionDep,
    current: CurrentUserRoleDep,
    images: ImageStoreDep,
    feed: ItemFeedDep,
    name: str = Form(""),
    description: str = Form(""),
    price: str = Form("0"),
    category: str = Form("General"),
    condition: str = Form("Good"),
    location: str = Form(""),
    whatsapp_number: str = Form(""),
    image: Optional[UploadFile] = File(None),
):
    """
    Post a new item. The image is required; the listing expires after 60 days.
    """
    user = current["user"]

    if not name.strip() or not description.strip():
        raise HTTPException(status_code=400, detail="Please fill in the item name and description.")
    if image is None or not image.filename:
        raise HTTPException(
            status_code=400,
            detail="Please upload an image for your item. An image is required!",
        )

    try:
        item_in = ItemCreate(
            name=name,
            description=description,
            price=price,
            category=category,
            condition=condition,
            location=location,
            whatsapp_number=whatsapp_number or None,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=first_error(exc))

    stored = await _store_upload(images, image)

    item = Item(
        posted_by=user.id,
        image=stored.url,
        image_name=stored.name,
        **item_in.model_dump(),
    )
    session.add(item)
    session.commit()
    session.refresh(item)

    logger.info("User %s posted item %s", user.id, item.id)
    feed.publish(INSERT, item.id)
    return item


@router.patch("/{item_id}", response_model=ItemRead)
async def update_item(
    item_id: int,
    session: SessionDep,
    current: CurrentUserRoleDep,
    images: ImageStoreDep,
    feed: ItemFeedDep,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    condition: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    whatsapp_number: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
):
    item = get_item_or_404(session, item_id)
    _ensure_owner(item, current["user"])

    try:
        changes = ItemUpdate(
            name=name,
            description=description,
            price=price,
            category=category,
            condition=condition,
            location=location,
            whatsapp_number=whatsapp_number,
        ).model_dump(exclude_none=True)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=first_error(exc))

    if whatsapp_number == "":
        changes["whatsapp_number"] = None

    if image is not None and image.filename:
        stored = await _store_upload(images, image)
        images.delete(item.image_name)
        changes["image"] = stored.url
        changes["image_name"] = stored.name

    for field, value in changes.items():
        setattr(item, field, value)
    session.add(item)
    session.commit()
    session.refresh(item)

    feed.publish(UPDATE, item.id)
    return item


@router.post("/{item_id}/donate", response_model=ItemRead)
def mark_donated(
    item_id: int,
    session: SessionDep,
    current: CurrentUserRoleDep,
    feed: ItemFeedDep,
):
    """Mark an item as given away. Calling it again changes nothing."""
    item = get_item_or_404(session, item_id)
    _ensure_owner(item, current["user"])

    if not item.is_donated:
        item.is_donated = True
        item.donated_at = utcnow()
        session.add(item)
        session.commit()
        session.refresh(item)
        feed.publish(UPDATE, item.id)
    return item


@router.delete("/{item_id}", status_code=204)
def delete_item(
    item_id: int,
    session: SessionDep,
    current: CurrentUserRoleDep,
    images: ImageStoreDep,
    feed: ItemFeedDep,
):
    user = current["user"]
    item = get_item_or_404(session, item_id)

    # Owners delete their own items; admins delete anything
    if item.posted_by != user.id and current["role"] != "admin":
        raise HTTPException(
            status_code=403,
            detail="You can only delete items you posted.",
        )

    delete_item_cascade(session, item, images)
    session.commit()

    feed.publish(DELETE, item_id)
    return Response(status_code=204)


@router.get("/{item_id}/contact")
def contact_owner(item_id: int, session: SessionDep, current: CurrentUserRoleDep):
    """WhatsApp deep link, for the owner or a requester whose request was approved."""
    user = current["user"]
    item = get_item_or_404(session, item_id)
    own_request = find_request(session, item.id, user.id)

    if not can_contact(user, item, own_request):
        raise HTTPException(
            status_code=403,
            detail="The poster has to approve your request before you can contact them.",
        )
    url = whatsapp_link(item)
    if url is None:
        raise HTTPException(status_code=404, detail="This poster hasn't provided a WhatsApp number")
    return {"contact_url": url}
