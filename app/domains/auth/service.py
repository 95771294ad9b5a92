from typing import Optional

from fastapi import HTTPException

from app.shared.utils.security import decode_token

from .entities import UserInfo


def identity_from_payload(payload: Optional[dict]) -> Optional[UserInfo]:
    """Map verified token claims onto the identity the room core trusts"""
    if not payload or not payload.get("sub"):
        return None
    return UserInfo(
        id=str(payload["sub"]),
        display_name=payload.get("name") or f"user_{payload['sub']}",
        avatar=payload.get("avatar"),
    )


async def validate_token(token: str) -> UserInfo:
    """Валидация JWT токена и получение пользователя"""
    user = identity_from_payload(decode_token(token))
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user
