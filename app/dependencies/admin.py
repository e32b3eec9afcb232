import logging

from fastapi import Depends, HTTPException
from app.models.user import User
from app.utils.token import get_current_user

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


def require_admin(current_user: User = Depends(get_current_user)):
    if current_user.role != ADMIN_ROLE:
        logger.warning(f"User {current_user.id} tried to reach an admin endpoint")
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user
