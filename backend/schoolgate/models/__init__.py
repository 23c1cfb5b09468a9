# SchoolGate Models
from schoolgate.models.audit_log import AuditLog, AuditLogArchive
from schoolgate.models.base import BaseModel
from schoolgate.models.revoked_token import RevocationReason, RevokedToken
from schoolgate.models.user import User

__all__ = [
    "AuditLog",
    "AuditLogArchive",
    "BaseModel",
    "RevocationReason",
    "RevokedToken",
    "User",
]
