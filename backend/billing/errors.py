"""Exception types for the transaction and identity core.

Authentication errors surface before any transaction is opened. Not-found
errors are also used for tenant-isolation failures so that existence of rows
in other organizations is never revealed.
"""


class BillingCoreError(Exception):
    """Base class for all errors raised by the billing core."""

    pass


class AuthenticationError(BillingCoreError):
    """No identity could be resolved for a non-admin transaction."""

    pass


class InvalidApiKeyError(AuthenticationError):
    """API key is unknown, inactive, or of the wrong type."""

    pass


class TestOnlyOrganizationError(AuthenticationError):
    """Test organization override used outside the test environment."""

    __test__ = False

    def __init__(self) -> None:
        super().__init__("Attempted to use test organization id in a non-test environment")


class NotFoundError(BillingCoreError):
    """Requested record is not visible in the current tenant scope."""

    pass


class CustomerNotFoundError(NotFoundError):
    """No live-mode-consistent customer exists for the user in the organization."""

    def __init__(self) -> None:
        super().__init__("Customer not found")


class MembershipNotFoundError(NotFoundError):
    """API key owner organization has no membership for the key's user."""

    pass


class RlsContextError(BillingCoreError):
    """Security context could not be applied to the transaction."""

    pass


class EffectsPersistenceError(BillingCoreError):
    """Queued effects could not be persisted; the transaction aborts."""

    pass


class CallbackFailure(Exception):
    """Carries a business-callback failure through the transaction boundary.

    Raising it inside the transaction forces a rollback. The engine unpacks it
    afterwards, so it never reaches callers of the public surfaces.
    """

    def __init__(self, error: Exception) -> None:
        super().__init__(str(error))
        self.error = error
