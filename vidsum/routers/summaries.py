from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vidsum.database import get_db
from vidsum.dependencies import get_store, get_summarizer
from vidsum.models.summary import Summary
from vidsum.routers.auth import get_current_user
from vidsum.services.checkout import CurrentUser
from vidsum.services.subscription_store import SubscriptionStore
from vidsum.services.summarizer import SummarizerClient, SummarizerError, extract_video_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/summaries", tags=["summaries"])


class SummaryRequest(BaseModel):
    url: str
    summary_format: Literal["bullets", "paragraphs"] = "bullets"
    summary_length: Literal["brief", "detailed"] = "brief"


class SummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    youtube_url: str
    video_id: str
    video_title: Optional[str] = None
    key_points: List[str]
    timestamps: List[dict]
    main_takeaways: List[str]
    summary_format: str
    summary_length: str
    created_at: datetime


@router.post("", response_model=SummaryResponse)
async def create_summary(
    request: SummaryRequest,
    current_user: CurrentUser = Depends(get_current_user),
    store: SubscriptionStore = Depends(get_store),
    summarizer: SummarizerClient = Depends(get_summarizer),
    db: AsyncSession = Depends(get_db),
):
    video_id = extract_video_id(request.url)
    if not video_id:
        raise HTTPException(status_code=400, detail="Invalid YouTube URL")

    if await store.find_active(current_user.id) is None:
        raise HTTPException(status_code=402, detail="An active subscription is required")

    if not summarizer.is_configured:
        raise HTTPException(status_code=503, detail="Summarizer not configured")

    try:
        result = await summarizer.summarize(
            request.url, request.summary_format, request.summary_length, user_id=current_user.id
        )
    except SummarizerError as e:
        logger.error("[SUMMARY] %s failed for %s: %s", video_id, current_user.id, e)
        raise HTTPException(status_code=502, detail="Failed to generate summary")

    await store.ensure_user(current_user.id, email=current_user.email)
    summary = Summary(
        user_id=current_user.id,
        youtube_url=request.url,
        video_id=video_id,
        video_title=result.video_title,
        summary_text="\n".join(result.key_points),
        key_points=result.key_points,
        timestamps=result.timestamps,
        main_takeaways=result.main_takeaways,
        summary_format=request.summary_format,
        summary_length=request.summary_length,
    )
    db.add(summary)
    await db.commit()

    logger.info("[SUMMARY] stored %s for %s", video_id, current_user.id)
    return summary


@router.get("", response_model=List[SummaryResponse])
async def list_summaries(
    limit: int = Query(default=20, ge=1, le=100),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Summary)
        .where(Summary.user_id == current_user.id)
        .order_by(Summary.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
