from app.models.agent_application import AgentApplication
from app.models.agent_draft import AgentDraft
from app.models.audit_log import AuditLog

__all__ = [
    "AgentApplication",
    "AgentDraft",
    "AuditLog",
]
