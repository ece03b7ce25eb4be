"""Error taxonomy for the bill analysis API.

Every error carries the HTTP status it maps to and the message that is safe
to show the caller. Server-side detail goes to the log, never to the client.
"""

from typing import Optional

GENERIC_ANALYSIS_ERROR = "Something went wrong analyzing the bill."


class MediGuardError(Exception):
    status_code = 500
    public_message = GENERIC_ANALYSIS_ERROR

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        self.message = message or self.public_message
        self.detail = detail
        super().__init__(detail or self.message)


class ClientInputError(MediGuardError):
    """Missing or invalid request input. The message is shown verbatim."""

    status_code = 400
    public_message = "Invalid request."


class AuthenticationRequired(MediGuardError):
    status_code = 401
    public_message = "Please sign in to continue."


class NotFoundError(MediGuardError):
    status_code = 404
    public_message = "Not found."


class GuestLimitExceeded(MediGuardError):
    status_code = 429
    public_message = "You've used your free analyses for today. Sign in to keep analyzing bills."


class ServerConfigurationError(MediGuardError):
    public_message = "Server configuration error."


class UpstreamFailure(MediGuardError):
    """The model endpoint failed or returned nothing usable."""

    def __init__(self, detail: Optional[str] = None, body: Optional[str] = None):
        self.body = body
        super().__init__(detail=detail)


class MalformedAnalysisError(MediGuardError):
    """The model answer could not be read as a BillAnalysis."""

    def __init__(self, detail: Optional[str] = None, answer: Optional[str] = None):
        self.answer = answer
        super().__init__(detail=detail)


class StorageError(MediGuardError):
    public_message = "Could not reach saved analyses. Please try again."
