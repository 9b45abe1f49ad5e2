from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from typing import Optional, List
import logging

logger = logging.getLogger(__name__)


class NotificationService:
    """
    In-app notification sink.

    Callers schedule notifications as post-commit side effects, so a
    failure here never affects a financial mutation.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.notifications

    async def get_users_by_role(self, roles: List[str]) -> List[dict]:
        cursor = self.db.users.find({"role": {"$in": roles}, "status": "active"})
        return await cursor.to_list(length=None)

    async def create_notification(
        self,
        user_id,
        type: str,
        title: str,
        message: str,
        project_id=None,
        related_model: Optional[str] = None,
        related_id=None,
        created_by=None
    ) -> str:
        notification = {
            "userId": str(user_id),
            "type": type,
            "title": title,
            "message": message,
            "projectId": str(project_id) if project_id is not None else None,
            "relatedModel": related_model,
            "relatedId": str(related_id) if related_id is not None else None,
            "createdBy": str(created_by) if created_by is not None else None,
            "isRead": False,
            "createdAt": datetime.utcnow()
        }
        result = await self.collection.insert_one(notification)
        return str(result.inserted_id)

    async def notify_roles(
        self,
        roles: List[str],
        type: str,
        title: str,
        message: str,
        project_id=None,
        related_model: Optional[str] = None,
        related_id=None,
        created_by=None
    ) -> int:
        """Notify every active user holding one of `roles`. Returns the count sent."""
        users = await self.get_users_by_role(roles)
        for user in users:
            await self.create_notification(
                user_id=user["_id"],
                type=type,
                title=title,
                message=message,
                project_id=project_id,
                related_model=related_model,
                related_id=related_id,
                created_by=created_by
            )
        logger.info(f"[NOTIFY] {type} sent to {len(users)} user(s) with roles {roles}")
        return len(users)
