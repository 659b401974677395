from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from pydantic import BaseModel, Field
from typing import List, Literal, Optional
import datetime as dt
from ..core.database import get_db
from ..core.auth import require_staff, ensure_group_access, accessible_group_ids
from ..core.errors import DanceSchoolError, ForbiddenError
from ..models.group import Group
from ..models.update import Update, Comment
from ..models.user import User
from ..services.notifications import send_update_notification
from .schemas import ORMModel, RequestModel, GroupBrief, UserBrief
import logging

logger = logging.getLogger(__name__)
router = APIRouter()

UPDATES_PAGE_SIZE = 50


class MediaItem(BaseModel):
    url: str
    type: Literal["image", "video"] = "image"
    thumbnail: Optional[str] = None


class UpdateCreate(RequestModel):
    group_id: int
    content: Optional[str] = None
    media: List[MediaItem] = []


class UpdateEdit(RequestModel):
    content: Optional[str] = None
    media: Optional[List[MediaItem]] = None


class CommentCreate(RequestModel):
    content: str = Field(min_length=1)


class CommentResponse(ORMModel):
    id: int
    content: str
    created_at: Optional[dt.datetime] = None
    author: Optional[UserBrief] = None


class UpdateResponse(ORMModel):
    id: int
    group_id: int
    content: Optional[str] = None
    media: List[MediaItem] = []
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None
    author: Optional[UserBrief] = None
    group: Optional[GroupBrief] = None
    comments: List[CommentResponse] = []


def _with_relations(query):
    return query.options(
        selectinload(Update.author),
        selectinload(Update.group),
        selectinload(Update.comments).selectinload(Comment.author),
    )


async def _load_update(db: AsyncSession, update_id: int) -> Update:
    result = await db.execute(
        _with_relations(select(Update).filter(Update.id == update_id))
        .execution_options(populate_existing=True)
    )
    update = result.scalar_one_or_none()
    if not update:
        raise HTTPException(status_code=404, detail="Update not found")
    return update


async def _update_group_id(db: AsyncSession, update_id: int) -> int:
    result = await db.execute(select(Update.group_id).filter(Update.id == update_id))
    group_id = result.scalar_one_or_none()
    if group_id is None:
        raise HTTPException(status_code=404, detail="Update not found")
    return group_id


def _ensure_author_or_admin(update: Update, user: User, action: str):
    if update.author_id != user.id and user.role != "admin":
        raise ForbiddenError(f"Not authorized to {action} this update")


@router.get("/", response_model=List[UpdateResponse])
async def get_updates(group: Optional[int] = Query(default=None), db: AsyncSession = Depends(get_db),
                      user: User = Depends(require_staff)):
    try:
        query = _with_relations(select(Update))
        if group is not None:
            ensure_group_access(user, group)
            query = query.filter(Update.group_id == group)
        else:
            allowed = accessible_group_ids(user)
            if allowed is not None:
                query = query.filter(Update.group_id.in_(allowed))

        result = await db.execute(query.order_by(Update.created_at.desc(), Update.id.desc()).limit(UPDATES_PAGE_SIZE))
        return result.scalars().all()
    except DanceSchoolError:
        raise
    except Exception as e:
        logger.error(f"Error getting updates: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving updates")


@router.get("/{update_id}", response_model=UpdateResponse)
async def get_update(update_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(require_staff)):
    try:
        # Checked before loading; reloading the authors resets the caller's assigned_groups
        ensure_group_access(user, await _update_group_id(db, update_id), "Not authorized to access this update")
        return await _load_update(db, update_id)
    except (HTTPException, DanceSchoolError):
        raise
    except Exception as e:
        logger.error(f"Error getting update {update_id}: {e}")
        raise HTTPException(status_code=500, detail="Error retrieving update")


@router.post("/", response_model=UpdateResponse, status_code=201)
async def create_update(payload: UpdateCreate, background_tasks: BackgroundTasks,
                        db: AsyncSession = Depends(get_db), user: User = Depends(require_staff)):
    try:
        group = await db.get(Group, payload.group_id)
        if not group:
            raise HTTPException(status_code=404, detail="Group not found")
        ensure_group_access(user, group.id, "Not authorized to post updates to this group")

        update = Update(
            group_id=group.id,
            author_id=user.id,
            content=payload.content,
            media=[item.model_dump() for item in payload.media],
        )
        db.add(update)
        await db.commit()

        background_tasks.add_task(send_update_notification, update.id)
        logger.info(f"Update {update.id} posted to group {group.id} by user {user.id}")
        return await _load_update(db, update.id)
    except (HTTPException, DanceSchoolError):
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error creating update: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error creating update")


@router.put("/{update_id}", response_model=UpdateResponse)
async def edit_update(update_id: int, payload: UpdateEdit, db: AsyncSession = Depends(get_db),
                      user: User = Depends(require_staff)):
    try:
        update = await _load_update(db, update_id)
        _ensure_author_or_admin(update, user, "update")

        if payload.content:
            update.content = payload.content
        if payload.media is not None:
            update.media = [item.model_dump() for item in payload.media]
        update.updated_at = dt.datetime.now(dt.timezone.utc)

        await db.commit()
        return await _load_update(db, update_id)
    except (HTTPException, DanceSchoolError):
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error editing update: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error updating update")


@router.delete("/{update_id}")
async def delete_update(update_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(require_staff)):
    try:
        update = await _load_update(db, update_id)
        _ensure_author_or_admin(update, user, "delete")

        await db.delete(update)
        await db.commit()
        return {"success": True, "message": "Update deleted successfully"}
    except (HTTPException, DanceSchoolError):
        raise
    except Exception as e:
        logger.error(f"Error deleting update: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error deleting update")


@router.post("/{update_id}/comments", response_model=UpdateResponse)
async def add_comment(update_id: int, payload: CommentCreate, db: AsyncSession = Depends(get_db),
                      user: User = Depends(require_staff)):
    try:
        ensure_group_access(user, await _update_group_id(db, update_id), "Not authorized to comment on this update")

        db.add(Comment(update_id=update_id, author_id=user.id, content=payload.content))
        await db.commit()
        return await _load_update(db, update_id)
    except (HTTPException, DanceSchoolError):
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error adding comment: {e}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Error adding comment")
