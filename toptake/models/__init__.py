from toptake.models.user import User
from toptake.models.prompt_day import PromptDay
from toptake.models.submission import Submission
from toptake.models.credit_balance import CreditBalance, CreditType
from toptake.models.credit_history import CreditHistoryEntry, CreditReason
from toptake.models.audit_log import AuditLog
from toptake.models.failed_job import FailedJob

__all__ = [
    "User",
    "PromptDay",
    "Submission",
    "CreditBalance",
    "CreditType",
    "CreditHistoryEntry",
    "CreditReason",
    "AuditLog",
    "FailedJob",
]
