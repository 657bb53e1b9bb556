"""Database enum types for consistent status and outcome values."""

from enum import Enum


class JobStatus(str, Enum):
    """Lifecycle states of a queued delivery job record.

    A pending job whose run_at lies in the future is reported as delayed.
    """

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class DeliveryOutcomeKind(str, Enum):
    """Result of a single delivery attempt."""

    DELIVERED = "delivered"
    REJECTED = "rejected"
    NETWORK_ERROR = "network_error"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


class WebhookEvent(str, Enum):
    """Application events that can be delivered to subscriber endpoints."""

    EMAIL_SENT = "email.sent"
    EMAIL_OPENED = "email.opened"
    EMAIL_CLICKED = "email.clicked"
    EMAIL_BOUNCED = "email.bounced"
    REPLY_RECEIVED = "reply.received"
    REPLY_INTERESTED = "reply.interested"
    LEAD_BOUNCED = "lead.bounced"
    LEAD_UNSUBSCRIBED = "lead.unsubscribed"
    CAMPAIGN_STARTED = "campaign.started"
    CAMPAIGN_COMPLETED = "campaign.completed"
    CAMPAIGN_PAUSED = "campaign.paused"
    INBOX_PAUSED = "inbox.paused"
    INBOX_ERROR = "inbox.error"
    WEBHOOK_TEST = "webhook.test"
