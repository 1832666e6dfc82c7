from __future__ import annotations
import uuid
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Index, Numeric, String, Text, Uuid, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from physio.db import Base
from physio.time_utils import utc_now


class Profile(Base):
    """치료사 프로필. id 는 IdP 의 사용자 id(sub)와 같다."""
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    preferred_ai_model: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    patients: Mapped[List["Patient"]] = relationship(
        back_populates="therapist", cascade="all, delete-orphan", passive_deletes=True
    )


class Patient(Base):
    __tablename__ = "patients"
    __table_args__ = (
        Index("idx_patients_therapist", "therapist_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    therapist_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    therapist: Mapped["Profile"] = relationship(back_populates="patients")
    visits: Mapped[List["Visit"]] = relationship(
        back_populates="patient", cascade="all, delete-orphan", passive_deletes=True
    )


# 같은 치료사 안에서 (이름, 성, 생년월일) 중복 금지. 이름은 대소문자 무시.
Index(
    "uq_patients_name_dob",
    Patient.therapist_id,
    func.lower(Patient.first_name),
    func.lower(Patient.last_name),
    Patient.date_of_birth,
    unique=True,
)


class Visit(Base):
    __tablename__ = "visits"
    __table_args__ = (
        Index("idx_visits_patient_date", "patient_id", "visit_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    visit_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    interview: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recommendations: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recommendations_generated_by_ai: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recommendations_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    patient: Mapped["Patient"] = relationship(back_populates="visits")
    ai_generations: Mapped[List["VisitAiGeneration"]] = relationship(
        back_populates="visit", cascade="all, delete-orphan", passive_deletes=True
    )


class VisitAiGeneration(Base):
    """AI 추천 생성 이력. 한 번 저장되면 수정하지 않는다."""
    __tablename__ = "visit_ai_generations"
    __table_args__ = (
        Index("idx_visit_ai_generations_visit", "visit_id", "created_at"),
        Index("idx_visit_ai_generations_therapist", "therapist_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    visit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("visits.id", ondelete="CASCADE"), nullable=False
    )
    therapist_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    ai_response: Mapped[str] = mapped_column(Text, nullable=False)
    model_used: Mapped[str] = mapped_column(String(200), nullable=False)
    temperature: Mapped[Optional[float]] = mapped_column(Numeric(3, 2, asdecimal=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)

    visit: Mapped["Visit"] = relationship(back_populates="ai_generations")
