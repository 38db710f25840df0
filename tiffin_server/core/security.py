"""
安全相关功能
JWT 令牌签发/校验，以及管理员接口的权限依赖
"""

import jwt
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .exceptions import AuthenticationError, PermissionDeniedError

ADMIN_ROLE = "admin"


@dataclass
class Actor:
    """当前请求的操作者"""
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


class SecurityManager:
    """安全管理器"""
    
    def __init__(self, secret: str, algorithm: str = "HS256", expire_hours: int = 24 * 7):
        self.secret = secret
        self.algorithm = algorithm
        self.expire_hours = expire_hours
    
    def create_jwt_token(self, user_id: str, role: str, additional_claims: Dict[str, Any] = None) -> str:
        """创建JWT token"""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "role": role,
            "exp": now + timedelta(hours=self.expire_hours),
            "iat": now,
        }
        if additional_claims:
            payload.update(additional_claims)
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)
    
    def decode_jwt_token(self, token: str) -> Dict[str, Any]:
        """解码JWT token"""
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired", "AUTHENTICATION_REQUIRED")
        except jwt.InvalidTokenError as e:
            raise AuthenticationError(f"Invalid token: {e}", "AUTHENTICATION_REQUIRED")
    
    def get_actor_from_token(self, token: str) -> Actor:
        """从token中提取操作者"""
        payload = self.decode_jwt_token(token)
        user_id = payload.get("sub")
        if not user_id:
            raise AuthenticationError("Token missing subject", "AUTHENTICATION_REQUIRED")
        return Actor(user_id=str(user_id), role=str(payload.get("role") or ""))


bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_actor(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    """从 Authorization header 中解析操作者"""
    if credentials is None:
        raise AuthenticationError("Missing bearer token", "AUTHENTICATION_REQUIRED")
    security_manager: SecurityManager = request.app.state.security
    return security_manager.get_actor_from_token(credentials.credentials)


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """检查管理员权限"""
    if not actor.is_admin:
        raise PermissionDeniedError()
    return actor
