"""
Exception taxonomy for the discovery pipeline.

Every error is caught at the smallest scope that can still make progress
(one account, one region) and turned into a logged, skipped item. Only the
service facade sees what escapes a whole operation.
"""


class DiscoveryError(Exception):
    """Base class for pipeline errors."""


class AuthorizationError(DiscoveryError):
    """Role assumption into a target account failed."""

    def __init__(self, account_id: str, role_arn: str, reason: str):
        self.account_id = account_id
        self.role_arn = role_arn
        self.reason = reason
        super().__init__(f"Failed to assume {role_arn} in account {account_id}: {reason}")


class MissingConfigurationError(DiscoveryError):
    """No AWS Config footprint (recorder, channel or status) in an account/region."""


class AlreadyProcessedError(DiscoveryError):
    """The latest configuration snapshot has already been ingested."""


class StoreError(DiscoveryError):
    """The document store could not be reached or rejected a request."""


class NotFoundError(DiscoveryError):
    """Documents that an operation depends on have not been discovered yet."""


class SessionReleasedError(DiscoveryError):
    """A delegated session was used after its scope ended."""
