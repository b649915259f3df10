from sqlalchemy import Column, String, Text, Boolean, Integer, DateTime
from .base import Base


class SymptomReportRow(Base):
    """Symptom form submission captured on the device, kept until the server acknowledges it."""
    __tablename__ = "symptoms"

    id = Column(String, primary_key=True)  # Client-generated, sent to server for dedup
    patient_id = Column(String, nullable=False, index=True)
    symptoms_json = Column(Text, nullable=False)  # JSON list of symptom codes
    notes = Column(Text, nullable=True)
    photo_path = Column(String(500), nullable=True)  # Local file path or uploaded URL
    voice_path = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)
    synced = Column(Boolean, nullable=False, default=False, index=True)

    # Insertion sequence, tie-breaker for reports sharing a created_at
    seq = Column(Integer, nullable=False, default=0)
