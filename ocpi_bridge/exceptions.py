"""Error types raised by the bridge services.

Each error carries the OCPI status code the HTTP layer reports for it.
"""

from __future__ import annotations


class OcpiError(Exception):
    status_code: int = 2000
    http_status: int = 400


class MissingParamError(OcpiError):
    status_code = 2001


class InvalidParamError(OcpiError):
    status_code = 2001


class UnknownTokenTypeError(InvalidParamError):
    pass


class UnknownTokenError(OcpiError):
    status_code = 2004
    http_status = 404


class PartnerPushError(Exception):
    """A partner rejected a push or could not be reached."""


class UnauthorizedError(OcpiError):
    http_status = 401
