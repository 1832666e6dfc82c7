from __future__ import annotations
import uuid
from datetime import date, datetime
from typing import Annotated, Dict, Generic, List, Optional, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict, computed_field
from pydantic.alias_generators import to_camel

from physio.services.etag import weak_etag
from physio.time_utils import ensure_utc

UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]

T = TypeVar("T")


class CamelModel(BaseModel):
    # 응답/요청 모두 camelCase (프론트엔드 규약)
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class Page(CamelModel, Generic[T]):
    items: List[T]
    page: int
    page_size: int
    total_items: int
    total_pages: int


class Versioned(CamelModel):
    updated_at: UtcDatetime

    @computed_field
    @property
    def etag(self) -> str:
        return weak_etag(self.updated_at)


# 환자
class PatientCreate(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[date] = None


class PatientUpdate(PatientCreate):
    pass


class PatientOut(Versioned):
    id: uuid.UUID
    first_name: str
    last_name: str
    date_of_birth: Optional[date] = None
    created_at: UtcDatetime


class PatientListItem(PatientOut):
    latest_visit_date: Optional[UtcDatetime] = None
    visit_count: int = 0


# 방문
class VisitCreate(CamelModel):
    visit_date: Optional[datetime] = None
    interview: Optional[str] = None
    description: Optional[str] = None
    recommendations: Optional[str] = None


class VisitUpdate(CamelModel):
    visit_date: Optional[datetime] = None
    interview: Optional[str] = None
    description: Optional[str] = None


class VisitOut(Versioned):
    id: uuid.UUID
    patient_id: uuid.UUID
    visit_date: UtcDatetime
    interview: Optional[str] = None
    description: Optional[str] = None
    recommendations: Optional[str] = None
    recommendations_generated_by_ai: bool = False
    recommendations_generated_at: Optional[UtcDatetime] = None
    created_at: UtcDatetime
    ai_generation_count: int = 0
    latest_ai_generation_id: Optional[uuid.UUID] = None


class PatientDetails(PatientOut):
    visits: Optional[List[VisitOut]] = None


class VisitRecommendationsUpdate(CamelModel):
    recommendations: Optional[str] = None
    ai_generated: bool = False
    source_generation_id: Optional[uuid.UUID] = None


class VisitRecommendationsOut(Versioned):
    id: uuid.UUID
    recommendations: Optional[str] = None
    recommendations_generated_by_ai: bool
    recommendations_generated_at: Optional[UtcDatetime] = None


# AI 추천 생성
class VisitAiGenerationCommand(CamelModel):
    model: Optional[str] = None
    temperature: Optional[float] = None
    prompt_overrides: Optional[Dict[str, Optional[str]]] = None
    regenerate_from_generation_id: Optional[uuid.UUID] = None


class VisitAiGenerationCreated(CamelModel):
    generation_id: uuid.UUID
    status: str = "completed"
    model: str
    temperature: float
    prompt: str
    ai_response: str
    recommendations_preview: str
    created_at: UtcDatetime


class VisitAiGenerationListItem(CamelModel):
    id: uuid.UUID
    model: str
    temperature: Optional[float] = None
    prompt: str
    ai_response: str
    created_at: UtcDatetime


class VisitAiGenerationDetail(VisitAiGenerationListItem):
    visit_id: uuid.UUID
    therapist_id: uuid.UUID


# 프로필
class ProfileOut(Versioned):
    id: uuid.UUID
    first_name: str
    last_name: str
    preferred_ai_model: Optional[str] = None
    created_at: UtcDatetime


class ProfileUpdate(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    preferred_ai_model: Optional[str] = None
