"""Small HTTP-related constants shared across relay.

Kept dependency-free so provider modules can import it without cycles.
"""

from __future__ import annotations

# Statuses worth another attempt when a provider error carries no retry-after.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

RATE_LIMIT_STATUS_CODE = 429
