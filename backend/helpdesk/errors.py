"""Domain errors raised by services and translated to HTTP responses in main."""


class HelpdeskError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(HelpdeskError):
    """Missing or malformed input."""
    status_code = 400


class AuthenticationError(HelpdeskError):
    """Missing session or bad credentials."""
    status_code = 401


class SessionInvalidError(AuthenticationError):
    """Session cookie is forged, expired or points at a disabled account. The cookie is cleared."""

    def __init__(self, message: str = "Session expired, please sign in again"):
        super().__init__(message)


class AuthorizationError(HelpdeskError):
    """Role, ownership or tenant mismatch."""
    status_code = 403


class NotFoundError(HelpdeskError):
    """Resource does not exist (or its existence must not be disclosed)."""
    status_code = 404


class StateConflictError(HelpdeskError):
    """Operation not allowed in the resource's current state."""
    status_code = 409


class TransientError(HelpdeskError):
    """Store or crypto failure; the caller only ever sees a generic message."""
    status_code = 500


# ============ OTP ============

class OTPError(ValidationError):
    """Base class for one-time password failures."""


class OTPCooldownError(OTPError):
    status_code = 429

    def __init__(self, next_request_in: int):
        plural = "s" if next_request_in != 1 else ""
        super().__init__(
            f"Please wait {next_request_in} second{plural} before requesting a new code."
        )
        self.next_request_in = next_request_in


class OTPLimitError(OTPError):
    status_code = 429

    def __init__(self):
        super().__init__("You have reached the code request limit. Try again later.")
        self.requests_remaining = 0


class OTPNotFoundError(OTPError):
    def __init__(self):
        super().__init__("No active OTP. Request a new code.")


class OTPExpiredError(OTPError):
    def __init__(self):
        super().__init__("The code has expired. Request a new code.")


class OTPInvalidCodeError(OTPError):
    def __init__(self, remaining: int):
        super().__init__(f"Incorrect code. Attempts remaining: {remaining}")
        self.remaining = remaining


class OTPAttemptsExceededError(OTPError):
    def __init__(self):
        super().__init__("Maximum attempts exceeded. Request a new code.")
        self.remaining = 0
