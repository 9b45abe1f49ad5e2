"""
FINANCE CORE: POST-COMMIT SIDE EFFECTS

Work that follows a committed atomic unit (phase refresh, project
recalculation, notifications) is queued here and run only after commit.

Each effect yields a SideEffectOutcome. A failing effect is logged and
recorded in `failed_side_effects` for later retry; it is never raised, so
the parent operation's result depends on its atomic unit alone.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class SideEffectOutcome:
    name: str
    succeeded: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "succeeded": self.succeeded, "error": self.error}


class PostCommitEffects:
    """Queue of best-effort effects for one operation"""

    def __init__(self, db: AsyncIOMotorDatabase, project_id=None, operation: str = ""):
        self.db = db
        self.project_id = project_id
        self.operation = operation
        self._pending: List[Dict[str, Any]] = []

    def add(self, name: str, effect: Callable[[], Awaitable[Any]], params: Optional[Dict[str, Any]] = None):
        self._pending.append({"name": name, "effect": effect, "params": params or {}})
        return self

    def __len__(self):
        return len(self._pending)

    def clear(self):
        """Drop queued effects (the atomic unit did not commit)"""
        self._pending.clear()

    async def run_all(self) -> List[SideEffectOutcome]:
        effects = self._pending.copy()
        self._pending.clear()

        outcomes = []
        for item in effects:
            try:
                await item["effect"]()
                outcomes.append(SideEffectOutcome(name=item["name"], succeeded=True))
            except Exception as e:
                logger.error(
                    f"[SIDE_EFFECT] {item['name']} failed after {self.operation or 'operation'}: {str(e)}"
                )
                outcomes.append(SideEffectOutcome(name=item["name"], succeeded=False, error=str(e)))
                await self._record_failure(item, e)
        return outcomes

    async def _record_failure(self, item: Dict[str, Any], error: Exception):
        try:
            await self.db.failed_side_effects.insert_one({
                "name": item["name"],
                "operation": self.operation,
                "projectId": self.project_id,
                "params": item["params"],
                "error": str(error),
                "status": "pending_retry",
                "createdAt": datetime.utcnow(),
            })
        except Exception as e:
            logger.error(f"[SIDE_EFFECT] Could not record failed effect {item['name']}: {str(e)}")
