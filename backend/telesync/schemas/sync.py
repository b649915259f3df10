"""
Typed sync queue payloads.
Each outbound operation is a tagged union member resolved by its ``kind``
when enqueued and again when the queue is drained.
"""
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import Field, TypeAdapter

from .remote import FeedbackSubmission, SymptomSubmission


class SyncKind(str, Enum):
    SYMPTOM = "symptom"
    FEEDBACK = "feedback"


class SymptomCode(str, Enum):
    FEVER = "fever"
    COUGH = "cough"
    HEADACHE = "headache"
    BODY_PAIN = "bodyPain"
    COLD = "cold"
    STOMACH = "stomach"
    VOMITING = "vomiting"
    DIARRHEA = "diarrhea"
    BREATHING = "breathing"
    OTHER = "other"


class SymptomPayload(SymptomSubmission):
    kind: Literal["symptom"] = "symptom"


class FeedbackPayload(FeedbackSubmission):
    kind: Literal["feedback"] = "feedback"
    rating: int = Field(ge=1, le=5)


QueuePayload = Annotated[Union[SymptomPayload, FeedbackPayload], Field(discriminator="kind")]

queue_payload_adapter = TypeAdapter(QueuePayload)
