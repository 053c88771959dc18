from vidsum.models.user import User
from vidsum.models.subscription import SubscriptionRecord, SubscriptionStatus
from vidsum.models.audit_log import AuditLog
from vidsum.models.summary import Summary

__all__ = ["User", "SubscriptionRecord", "SubscriptionStatus", "AuditLog", "Summary"]
