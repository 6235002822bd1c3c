"""Service layer: pre-registration storage and email notifications."""

from .notifications import EmailResult, NotificationService, get_notification_service
from .registrations import (
    PreRegistration,
    PreRegistrationStore,
    get_leader_registrations,
    get_member_registrations,
)

__all__ = [
    "EmailResult",
    "NotificationService",
    "PreRegistration",
    "PreRegistrationStore",
    "get_leader_registrations",
    "get_member_registrations",
    "get_notification_service",
]
