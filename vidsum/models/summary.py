from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, Text, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from vidsum.database import Base
from vidsum.models.subscription import utcnow


class Summary(Base):
    __tablename__ = "summaries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), index=True, nullable=False)

    youtube_url: Mapped[str] = mapped_column(String(512), nullable=False)
    video_id: Mapped[str] = mapped_column(String(16), nullable=False)
    video_title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    summary_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    key_points: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    timestamps: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    main_takeaways: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    summary_format: Mapped[str] = mapped_column(String(32), nullable=False)
    summary_length: Mapped[str] = mapped_column(String(32), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True, nullable=False)
