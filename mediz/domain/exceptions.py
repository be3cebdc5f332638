"""Billing error taxonomy.

Not-found conditions are benign for a single provider event: the
reconciler catches them and reports a skip. Only ``ReconciliationFailed``
is meant to reach the webhook boundary as a retryable failure.
"""

from typing import Optional


class BillingError(Exception):
    """Base class for every billing-domain error."""


class PlanNotFound(BillingError):
    def __init__(self, external_id: str):
        super().__init__(f"No plan registered for external id {external_id!r}")
        self.external_id = external_id


class UnknownCustomer(BillingError):
    def __init__(self, customer_id: str, provider: str = "stripe"):
        super().__init__(f"No user matches {provider} customer {customer_id!r}")
        self.customer_id = customer_id
        self.provider = provider


class UnknownSubscription(BillingError):
    def __init__(self, external_subscription_id: str):
        super().__init__(f"No subscription recorded for {external_subscription_id!r}")
        self.external_subscription_id = external_subscription_id


class UserNotFound(BillingError):
    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class SubscriptionNotFound(BillingError):
    def __init__(self, subscription_id: int):
        super().__init__(f"Subscription {subscription_id} not found")
        self.subscription_id = subscription_id


class ReconciliationFailed(BillingError):
    """The backing store rejected or failed a ledger write."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
