# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Error taxonomy surfaced by the relay entry points.

Each error carries a machine-readable ``code`` and the HTTP status the API
answers with. Extra context for the response body lives in ``details``.
"""

from __future__ import annotations

from typing import Any


class RelayError(RuntimeError):
    """Base class for errors reported to relay callers."""

    code = "relay_error"
    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        """Build the JSON body returned to API callers."""
        return {"ok": False, "error": self.message, "code": self.code, **self.details}


class NoCapacityAvailable(RelayError):
    """No endpoint has capacity left for the request. Retry after the next reset."""

    code = "no_capacity"
    status_code = 429


class EndpointQuotaExceeded(RelayError):
    """The chosen endpoint reported its own quota as exhausted."""

    code = "endpoint_quota_exceeded"
    status_code = 429


class DispatchFailure(RelayError):
    """Delivery failed for a reason unrelated to quota."""

    code = "dispatch_failed"
    status_code = 500


class ProviderUnavailable(RelayError):
    """The endpoint list could not be loaded and no fallback exists."""

    code = "provider_unavailable"
    status_code = 503


class InvalidRequest(RelayError):
    """The request parameters are missing or malformed."""

    code = "invalid_request"
    status_code = 400
