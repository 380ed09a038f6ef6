class OutreachError(Exception):
    """Base class for errors that map onto an HTTP error envelope."""

    status_code = 400
    code = "bad_request"

    def __init__(self, message: str, *, details: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class DomainValidationError(OutreachError):
    status_code = 400
    code = "bad_request"


class InvalidSegmentError(DomainValidationError):
    code = "invalid_segment"

    def __init__(self, segment: str):
        super().__init__(f"Invalid segment '{segment}'")
        self.segment = segment


class NotFoundError(OutreachError):
    status_code = 404
    code = "not_found"


class InvalidStateError(OutreachError):
    status_code = 409
    code = "invalid_state"


class CampaignInSendingError(InvalidStateError):
    def __init__(self, campaign_id: str):
        super().__init__("Campaign is currently sending")
        self.campaign_id = campaign_id


class SubscriptionLockedError(OutreachError):
    status_code = 403
    code = "subscription_locked"


class PaymentError(OutreachError):
    status_code = 402
    code = "payment_error"

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class SendError(Exception):
    """Per-recipient delivery failure. Recorded on the message log, never raised to callers."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
