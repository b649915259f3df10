from sqlalchemy import Column, String, Text, Boolean, DateTime
from .base import Base


class CachedRecordRow(Base):
    """Read-only mirror of a consultation/prescription record owned by the server."""
    __tablename__ = "records"

    id = Column(String, primary_key=True)
    patient_id = Column(String, primary_key=True, index=True)
    date = Column(String(40), nullable=False)  # ISO date as served
    doctor_name = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    prescription = Column(Text, nullable=True)
    type = Column(String(20), nullable=False)  # consultation, prescription
    cached_at = Column(DateTime, nullable=False)


class CachedMedicineRow(Base):
    """Medicine availability at nearby pharmacies, as last fetched for a patient."""
    __tablename__ = "medicines"

    id = Column(String, primary_key=True)
    patient_id = Column(String, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    dosage = Column(String(100), nullable=True)
    pharmacy = Column(String(200), nullable=True)
    available = Column(Boolean, nullable=False, default=True)
    last_updated = Column(String(40), nullable=False)  # Server-side stock timestamp
    cached_at = Column(DateTime, nullable=False)
