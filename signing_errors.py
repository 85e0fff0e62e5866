"""Errors raised by the signing pipeline"""


class SigningError(Exception):
    """Base class for signing failures.

    Attributes:
        status_code: HTTP status the service answers with
        code: Short machine-readable error code
        message: Detail for logs (and for the caller when ``public`` is set)
    """

    status_code = 500
    code = 'signing_error'
    public = False

    def __init__(self, message):
        self.message = message
        super().__init__(message)

    @property
    def public_message(self):
        """Message that is safe to hand back to an external caller"""
        if self.public:
            return self.message
        return 'signing unavailable'


class MalformedRequest(SigningError):
    """The caller asked for something SigV4 cannot sign"""

    status_code = 400
    code = 'malformed_request'
    public = True


class CredentialsMissing(SigningError):
    """Access key or secret key absent at signing time"""

    code = 'credentials_missing'


class InternalHashingFault(SigningError):
    """Unexpected failure in the HMAC/SHA-256 primitives"""

    code = 'internal_hashing_fault'
