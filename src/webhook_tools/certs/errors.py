# Error types raised by the certificate authority and key generator.
# Lower-level exceptions are always chained so the cause stays visible.


class CertificateError(Exception):
    """Base class for everything the certs package raises."""


class KeyGenerationError(CertificateError):
    pass


class SerialNumberError(CertificateError):
    pass


class SigningError(CertificateError):
    """The certificate template was rejected or could not be signed."""


class EncodingError(CertificateError):
    pass
