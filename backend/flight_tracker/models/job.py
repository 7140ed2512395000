import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from flight_tracker.database import Base


class JobType(str, enum.Enum):
    CHECK_NOW = "check_now"
    CHECK_ALL = "check_all"
    FLEX_SCAN = "flex_scan"
    CONTEXT_REFRESH = "context_refresh"
    SEND_EMAIL = "send_email"


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


TERMINAL_STATUSES = {JobStatus.SUCCESS.value, JobStatus.ERROR.value}


class Job(Base):
    """
    Durable unit of asynchronous work.

    Status moves queued -> running -> success|error. The only way back to
    queued is the stuck-job reset. ``payload`` and ``result`` are opaque JSON
    agreed between the caller and whoever executes the job.
    """
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(30), nullable=False)
    flight_id = Column(
        Integer,
        ForeignKey("flights.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    status = Column(String(20), default=JobStatus.QUEUED.value, nullable=False, index=True)
    progress_current = Column(Integer, default=0, nullable=False)
    progress_total = Column(Integer, default=0, nullable=False)

    payload = Column(JSON, nullable=True)
    result = Column(JSON, nullable=True)
    error_text = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    flight = relationship("Flight", back_populates="jobs")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Job {self.id}: {self.type} {self.status}>"
