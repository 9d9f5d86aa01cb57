"""kcert service layer.

Issuance, reconciliation, notification and the long-running loops that
keep them going.
"""

from kcert.services.coalesce import CoalescingTrigger
from kcert.services.issuance import (
    IssuanceLocks,
    IssuanceOrchestrator,
    RenewalOutcome,
    RenewalRequest,
)
from kcert.services.notification import LogNotifier, Notifier, SmtpNotifier, create_notifier
from kcert.services.reconcile import ReconcileReport, ReconciliationController, needs_renewal
from kcert.services.renewal_worker import RenewalWorker
from kcert.services.supervisor import Supervisor

__all__ = [
    "CoalescingTrigger",
    "IssuanceLocks",
    "IssuanceOrchestrator",
    "LogNotifier",
    "Notifier",
    "ReconcileReport",
    "ReconciliationController",
    "RenewalOutcome",
    "RenewalRequest",
    "RenewalWorker",
    "SmtpNotifier",
    "Supervisor",
    "create_notifier",
    "needs_renewal",
]
