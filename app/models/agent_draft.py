import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.db.base import Base


class AgentDraft(Base):
    __tablename__ = "agent_drafts"
    __table_args__ = (
        CheckConstraint("step_index >= 0", name="ck_agent_draft_step_nonneg"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    step_index = Column(Integer, nullable=False, default=0)
    form_data = Column(JSONB, nullable=False, default=dict)
    saved_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    # Client token of the latest submit attempt; lets a retry from a new request replay it.
    submission_token = Column(String(100), nullable=True)
    last_reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
