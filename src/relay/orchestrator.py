"""Request orchestration: quota gate, key rotation and bounded retries.

Each attempt asks the key manager for a fresh key and builds a new provider
client, so a key that was rate-limited on the previous attempt is not reused.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from relay.config import StreamingOptions
from relay.errors import (
    InternalError,
    NoAvailableKeyError,
    QuotaExceededError,
    RateLimitError,
)
from relay.models import ResponseType
from relay.providers import create_client
from relay.retry import is_fatal, is_transport_error, retry_after_from_error

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from relay.config import ProviderSettings
    from relay.interfaces import KeyManager, QuotaService
    from relay.message import Message
    from relay.models import ModelDescriptor, ProviderKey, RequestContext, TurnResult
    from relay.providers.base import ProviderClient
    from relay.streaming.turns import ConversationTurnProcessor

logger = logging.getLogger(__name__)

#: Each streamed response is charged as one request against the user's quota.
REQUEST_COST = 1


class RequestOrchestrator:
    """Run the turn machine with quota checks, key rotation and retries."""

    def __init__(
        self,
        *,
        keys: KeyManager,
        quota: QuotaService,
        turn_processor: ConversationTurnProcessor,
        client_factory: Callable[
            [ModelDescriptor, ProviderKey, ProviderSettings | None], ProviderClient
        ] = create_client,
        options: StreamingOptions | None = None,
        settings: ProviderSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._keys = keys
        self._quota = quota
        self._turns = turn_processor
        self._client_factory = client_factory
        self._options = options or StreamingOptions()
        self._settings = settings
        self._sleep = sleep

    async def _check_quota(self, context: RequestContext) -> None:
        allowed, reason = await self._quota.check_quota(context.user_id, REQUEST_COST, 0)
        if not allowed:
            raise QuotaExceededError(
                reason or "User has exceeded their quota.", user_id=context.user_id
            )

    async def _acquire(self, context: RequestContext) -> ProviderClient:
        provider_id = context.model.provider_id
        key = await self._keys.get_available_key(provider_id)
        if key is None:
            raise NoAvailableKeyError(
                f"No available API key for provider {provider_id}",
                hint="All keys may be rate-limited; they are released after their retry-after.",
                retryable=True,
                provider=provider_id,
                phase="acquire_key",
            )
        return self._client_factory(context.model, key, self._settings)

    async def execute(
        self,
        context: RequestContext,
        message: Message,
        *,
        response_type: ResponseType = ResponseType.TEXT,
    ) -> TurnResult:
        """Stream *message* to completion, retrying recoverable failures.

        Raises:
            QuotaExceededError: Before any provider call when quota is denied.
            Exception: The last attempt's error once retries are exhausted.
        """
        await self._check_quota(context)
        policy = self._options.retry
        for attempt in range(1, policy.max_attempts + 1):
            delay = policy.delay_for(attempt)
            client: ProviderClient | None = None
            try:
                client = await self._acquire(context)
                result = await self._turns.stream_turn(
                    context, message, client, response_type=response_type
                )
            except RateLimitError as e:
                wait = retry_after_from_error(e)
                if wait is None:
                    wait = delay
                key_id = e.api_key_id or (client.key_id if client else None)
                logger.warning(
                    "Rate limited on attempt %d for message %s (key %s)",
                    attempt,
                    message.id,
                    key_id,
                )
                if key_id is not None:
                    await self._keys.report_rate_limited(key_id, wait)
                if attempt == policy.max_attempts:
                    raise
                logger.info("Retrying message %s in %.1fs after rate limit", message.id, wait)
                await self._sleep(wait)
            except Exception as e:
                if is_fatal(e) or attempt == policy.max_attempts:
                    raise
                kind = "Transport failure" if is_transport_error(e) else "Attempt failed"
                logger.warning(
                    "%s on attempt %d for message %s: %s", kind, attempt, message.id, e
                )
                logger.info("Retrying message %s in %.1fs", message.id, delay)
                await self._sleep(delay)
            else:
                if client.key_id is not None:
                    await self._keys.report_success(client.key_id)
                logger.info("Streamed message %s on attempt %d", message.id, attempt)
                return result
            finally:
                if client is not None:
                    await client.aclose()
        raise InternalError("Retry loop ended without a result")  # pragma: no cover
