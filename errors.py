# errors.py
"""
Domain errors raised by the billing services.

Each error carries the HTTP status the API answers with; `main.py` registers a
single handler for `BillingError` so routers never translate them by hand.
"""
from __future__ import annotations


class BillingError(Exception):
    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        payload = {"detail": self.message, "code": type(self).__name__}
        if self.context:
            payload["context"] = self.context
        return payload


# -------- input --------
class ValidationError(BillingError):
    status_code = 400


class InvalidReadingError(ValidationError):
    """A reading line that can never produce a consumption (bad multiplier, NaN...)."""


class MonotonicityError(InvalidReadingError):
    """Present reading lower than the previous one."""


# -------- lookups --------
class AccountNotFoundError(BillingError):
    status_code = 404


class BillNotFoundError(BillingError):
    status_code = 404


class SettingsNotFoundError(BillingError):
    status_code = 404


# -------- state --------
class AccountNotActiveError(BillingError):
    status_code = 409


class NoTariffFoundError(BillingError):
    """No active bracket covers the consumption; the bill needs a manual tariff review."""
    status_code = 422


class AlreadyPaidError(BillingError):
    status_code = 409


class DuplicateReceiptError(BillingError):
    status_code = 409
