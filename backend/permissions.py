from fastapi import HTTPException, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from bson import ObjectId
from bson.errors import InvalidId
from typing import List
import logging

logger = logging.getLogger(__name__)

OWNER_ROLES = ["owner"]
MANAGER_ROLES = ["owner", "pm", "project_manager"]
FINANCE_READ_ROLES = ["owner", "pm", "project_manager", "accountant", "investor"]
SUPPLIER_ROLES = ["supplier"]


class PermissionChecker:
    """
    Permission enforcement for finance routes.

    RULES:
    1. User must be authenticated (JWT)
    2. User must exist and have status = active
    3. Role comes from the users collection, never from the token alone
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def get_authenticated_user(self, current_user: dict) -> dict:
        """Load and validate the authenticated user"""
        user_id = current_user.get("user_id")

        try:
            user = await self.db.users.find_one({"_id": ObjectId(str(user_id))})
        except (InvalidId, TypeError):
            user = None

        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not found"
            )

        if user.get("status", "active") != "active":
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User account is inactive"
            )

        user["user_id"] = str(user.pop("_id"))
        user["role"] = (user.get("role") or "").lower()
        return user

    async def check_role(self, user: dict, roles: List[str]):
        """Check the user holds one of `roles`"""
        if user.get("role") not in roles:
            logger.warning(f"Permission denied: user:{user.get('user_id')} role:{user.get('role')} needs {roles}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"One of roles {roles} required for this operation"
            )
        return True
