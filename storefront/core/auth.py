"""Dependencies для проверки прав администратора."""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from storefront.core.security import decode_access_token

security = HTTPBearer()

ADMIN_ROLES = frozenset({"ADMIN", "SUPER_ADMIN"})


def can_manage_orders(payload: dict) -> bool:
    """Может ли владелец токена подтверждать/отклонять заказы."""
    return payload.get("role") in ADMIN_ROLES


async def get_current_admin(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    Проверка токена администратора.

    Используется как dependency для защищенных эндпоинтов.
    Возвращает payload токена.
    """
    payload = decode_access_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Неверный или истекший токен",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not can_manage_orders(payload):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Недостаточно прав доступа",
        )

    return payload
