"""Study enrollment model."""
from sqlalchemy import Column, String, DateTime, UniqueConstraint
from datetime import datetime
import uuid

from shield_study.database import Base


class StudyRecord(Base):
    """Persisted study state for one client enrolled in one study."""

    __tablename__ = "study_enrollments"
    __table_args__ = (
        UniqueConstraint("study_name", "client_id", name="uq_study_client"),
    )

    # String UUIDs keep the table portable between PostgreSQL and SQLite
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    study_name = Column(String(100), nullable=False, index=True)
    client_id = Column(String(64), nullable=False, index=True)

    addon_id = Column(String(200))
    addon_version = Column(String(50))
    variation = Column(String(100))

    first_seen_at = Column(DateTime)
    installed_at = Column(DateTime)

    # Set exactly once, on the first end_study call
    ending_reason = Column(String(50))
    ended_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<StudyRecord {self.study_name} client={self.client_id} variation={self.variation}>"
