from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from dining_pipeline.core.models import COORDINATE_MAX_LENGTH, IDENTIFIER_MAX_LENGTH, NAME_MAX_LENGTH
from dining_pipeline.devkit.db import Base


class DiningLocationORM(Base):
    __tablename__ = "dining_location"

    id: Mapped[str] = mapped_column(String(IDENTIFIER_MAX_LENGTH), primary_key=True)
    name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), nullable=False)
    latitude: Mapped[str] = mapped_column(String(COORDINATE_MAX_LENGTH), nullable=False)
    longitude: Mapped[str] = mapped_column(String(COORDINATE_MAX_LENGTH), nullable=False)
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    image_urls: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)


class ApExamORM(Base):
    __tablename__ = "ap_exam"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    catalogue_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
