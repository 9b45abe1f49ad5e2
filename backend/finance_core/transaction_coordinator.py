"""
FINANCE CORE: TRANSACTION COORDINATOR

Runs an atomic unit inside a MongoDB session transaction.

    result = await coordinator.run(accept_fn, label="accept_purchase_order")

- accept_fn(session) performs every write of the unit with session=session
- the whole unit is bounded by an explicit deadline
- TransientTransactionError aborts are retried up to max_attempts
- domain errors (FinanceError) propagate unchanged
- a timeout becomes TransactionTimeoutError (retryable)
- any other failure becomes TransactionError

On any exception the transaction aborts and nothing is applied.
"""

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError
from typing import Any, Awaitable, Callable
import asyncio
import logging

from finance_core.errors import FinanceError, TransactionError, TransactionTimeoutError

logger = logging.getLogger(__name__)

AtomicOperation = Callable[[Any], Awaitable[Any]]

TRANSIENT_LABEL = "TransientTransactionError"


class TransactionCoordinator:

    def __init__(
        self,
        client: AsyncIOMotorClient,
        timeout_seconds: float = 10.0,
        max_attempts: int = 3
    ):
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(1, max_attempts)

    async def _attempt(self, operation: AtomicOperation) -> Any:
        """One transaction attempt. Commits on return, aborts on exception."""
        async with await self.client.start_session() as session:
            async with session.start_transaction():
                return await asyncio.wait_for(operation(session), timeout=self.timeout_seconds)

    async def run(self, operation: AtomicOperation, label: str = "transaction") -> Any:
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await self._attempt(operation)
                logger.info(f"[TRANSACTION] {label} committed (attempt {attempt})")
                return result

            except FinanceError as e:
                logger.warning(f"[TRANSACTION] {label} aborted: {e.error_code} {e.message}")
                raise

            except asyncio.TimeoutError:
                logger.error(f"[TRANSACTION] {label} exceeded {self.timeout_seconds}s, aborted")
                raise TransactionTimeoutError(
                    f"Operation '{label}' timed out. No changes were applied; please retry.",
                    {"operation": label, "timeoutSeconds": self.timeout_seconds}
                )

            except PyMongoError as e:
                if e.has_error_label(TRANSIENT_LABEL) and attempt < self.max_attempts:
                    logger.warning(
                        f"[TRANSACTION] {label} transient failure (attempt {attempt}/{self.max_attempts}): {str(e)}"
                    )
                    continue
                logger.error(f"[TRANSACTION] {label} failed: {str(e)}")
                raise TransactionError(
                    f"Operation '{label}' failed. No changes were applied.",
                    {"operation": label, "attempts": attempt}
                ) from e

            except Exception as e:
                logger.error(f"[TRANSACTION] {label} failed: {str(e)}")
                raise TransactionError(
                    f"Operation '{label}' failed. No changes were applied.",
                    {"operation": label, "attempts": attempt}
                ) from e
