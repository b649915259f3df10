"""
Wire models for the remote telemedicine service.
Field names are snake_case in Python and camelCase on the wire.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self, **kwargs) -> dict:
        return self.model_dump(mode="json", by_alias=True, **kwargs)


class Patient(WireModel):
    id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    village: Optional[str] = None


class ConsultationRecord(WireModel):
    id: str
    date: str
    doctor_name: Optional[str] = None
    notes: Optional[str] = None
    prescription: Optional[str] = None
    type: Literal["consultation", "prescription"] = "consultation"


class Consultation(WireModel):
    id: str
    scheduled_time: str
    call_type: Literal["video", "audio"] = "video"
    doctor_name: Optional[str] = None
    meeting_url: Optional[str] = None


class Medicine(WireModel):
    id: str
    name: str
    dosage: Optional[str] = None
    pharmacy: Optional[str] = None
    available: bool = True
    last_updated: str


class SymptomSubmission(WireModel):
    """Body of ``POST /symptoms``. ``id`` lets the server drop duplicate deliveries."""
    id: Optional[str] = None
    patient_id: str
    symptoms: List[str]
    notes: str = ""
    photo_path: Optional[str] = None
    voice_path: Optional[str] = None
    created_at: datetime


class FeedbackSubmission(WireModel):
    patient_id: str
    rating: int
    comment: str = ""
