from academy.core.models.feed_option_set import FeedOption, FeedOptionSet
from academy.core.models.idempotency_key import IdempotencyKey
from academy.core.models.makeup_ticket import MakeupTicket, MakeupTicketAuditLog
from academy.core.models.student_feed import FeedValue, StudentFeed
from academy.core.models.tenant_feed_settings import TenantFeedSettings

__all__ = [
    "FeedOption",
    "FeedOptionSet",
    "FeedValue",
    "IdempotencyKey",
    "MakeupTicket",
    "MakeupTicketAuditLog",
    "StudentFeed",
    "TenantFeedSettings",
]
