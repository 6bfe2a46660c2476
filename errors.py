"""
Error taxonomy for MedSecure.

Every error is terminal: it is reported to the caller as-is and never retried.
``status_code`` is the HTTP status the API answers with.
"""
from typing import Optional


class MedSecureError(Exception):
    status_code = 400
    message = "Request failed."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message


# ----- envelope codec -----
class NotThisPlatform(MedSecureError):
    message = "This file was not encrypted by MedSecure or is corrupted."


class DecryptionFailed(MedSecureError):
    message = "Failed to decrypt file. The file may be corrupted or tampered with."


class MalformedPayload(MedSecureError):
    message = "Decrypted content is not a valid MedSecure payload."


class SignatureMismatch(MedSecureError):
    message = "Invalid file signature. This file was not encrypted by MedSecure."


# ----- access gate / workflows -----
class AccessDenied(MedSecureError):
    status_code = 403
    message = "This feature is only available to authorized users and administrators."


class InvalidCredentials(MedSecureError):
    status_code = 401
    message = "Bad credentials"


class EmailTaken(MedSecureError):
    message = "email already registered"


class NotFound(MedSecureError):
    status_code = 404
    message = "Not found"


class RequestAlreadyDecided(MedSecureError):
    status_code = 409
    message = "This authorization request has already been decided."


class DuplicateRequest(MedSecureError):
    status_code = 409
    message = "You already have a pending authorization request."


# ----- collaborators -----
class StoreUnavailable(MedSecureError):
    status_code = 503
    message = "The data store is unavailable. Please try again."


class AnalysisUnavailable(MedSecureError):
    status_code = 502
    message = "Analysis failed. Please check your backend connection."
