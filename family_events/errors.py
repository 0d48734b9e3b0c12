"""Domain exceptions raised across the approval subsystem."""


class FamilyEventsError(Exception):
    """Base class for errors raised by this package."""


class AuthenticationError(FamilyEventsError):
    """Credential missing, refresh failed, or the provider rejected the grant."""

    def __init__(self, message: str, user_id: int | None = None):
        super().__init__(message)
        self.user_id = user_id


class EventNotFoundError(FamilyEventsError, LookupError):
    pass


class ApprovalNotFoundError(FamilyEventsError, LookupError):
    pass


class UserNotFoundError(FamilyEventsError, LookupError):
    pass


class DeliveryError(FamilyEventsError):
    """An outbound SMS or email could not be handed to the carrier/provider."""

    def __init__(self, message: str, channel: str | None = None):
        super().__init__(message)
        self.channel = channel


class EventNotProposableError(FamilyEventsError):
    """The event's current status does not allow a (new) proposal."""


class DailyProposalLimitError(FamilyEventsError):
    pass


class PushVerificationError(FamilyEventsError):
    """The push request could not be proven to come from the mail provider."""


class MalformedPushError(FamilyEventsError, ValueError):
    pass


class ProviderError(FamilyEventsError):
    """A mail or SMS provider API call failed with a non-auth error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class HistoryExpiredError(ProviderError):
    """The stored history id is older than the provider retains (Gmail answers 404)."""
