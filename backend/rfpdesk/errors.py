# errors.py
# Exception taxonomy shared by the ingestion pipeline, the lifecycle and the API.


class RfpDeskError(Exception):
    """Base class for every error raised by rfpdesk."""


class MailboxConnectionError(RfpDeskError, ConnectionError):
    """The shared inbox could not be reached. Nothing was written."""


class MessageParseError(RfpDeskError):
    """A raw message could not be parsed at all."""


class UnrecognizedTokenError(RfpDeskError):
    """No tracking token in the body; assumed to be foreign mail."""


class UnknownReferenceError(RfpDeskError):
    """The tracking token names an RFP or vendor that does not exist."""


class SenderMismatchError(RfpDeskError):
    """The From header does not match the vendor's registered address."""


class OracleError(RfpDeskError):
    """The AI call timed out, failed, or returned an off-schema response."""


class FanOutValidationError(RfpDeskError):
    """A send request named no vendors or vendors that do not exist."""

    def __init__(self, message, unknown_ids=None):
        super().__init__(message)
        self.unknown_ids = list(unknown_ids or [])


class InvalidTransitionError(RfpDeskError):
    """The requested action is not legal in the RFP's current status."""


class NotFoundError(RfpDeskError):
    pass


class NoProposalsError(RfpDeskError):
    """Comparison was requested before any vendor replied."""
