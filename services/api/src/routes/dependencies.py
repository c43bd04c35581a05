from typing import Optional

import conf
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from models.entities.couchbase.vendors import Vendor
from models.operations.users import user_create_if_not_exists_and_get
from models.operations.vendors import vendor_require_for_user
from utils import log

logger = log.get_logger(__name__)

security = HTTPBearer()


def _claim_email(payload: dict) -> Optional[str]:
    email = payload.get("email")
    # Some providers send a list of {"value": ...} entries
    if isinstance(email, list):
        if not email:
            return None
        item = email[0]
        return item.get("value") if isinstance(item, dict) else str(item)
    return email


def _claim_roles(payload: dict) -> list:
    roles = payload.get("roles", [])
    if isinstance(roles, str):
        roles = [roles]
    return roles


async def current_user_get(request: Request, token: HTTPAuthorizationCredentials = Depends(security)):
    if hasattr(request.app.state, "auth_client"):
        if payload := request.app.state.auth_client.decode_jwt(token.credentials):
            user_id = payload.get("sub")
            if user_id:
                email = _claim_email(payload)
                try:
                    payload["db_user"] = await user_create_if_not_exists_and_get(user_id, str(email) if email else "")
                except Exception as e:
                    # Auth still succeeds; routes that need the document check db_user
                    logger.error(f"Failed to ensure user existence for {user_id}: {e}")
            return payload
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No auth_client")


async def require_authenticated(user: dict = Depends(current_user_get)):
    if not user.get("sub"):
        logger.warning(f"User token does not contain sub (user_id). Claims: {list(user.keys())}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User ID not found in token")
    return user


async def require_admin(user: dict = Depends(require_authenticated)):
    """
    Dependency to ensure the user has the 'admin' role.
    """
    roles = _claim_roles(user)
    if "admin" not in roles:
        logger.warning(f"User {user.get('sub')} attempted admin access without 'admin' role. Roles: {roles}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )
    return user


async def require_vendor(user: dict = Depends(require_authenticated)) -> Vendor:
    """Vendor account of the caller; 403 when they have none."""
    return await vendor_require_for_user(user["sub"])


def is_admin(user: dict) -> bool:
    return "admin" in _claim_roles(user)


async def require_internal_api_key(
    x_internal_api_key: Optional[str] = Header(None, alias="X-Internal-API-Key"),
):
    expected = conf.get_internal_api_key()
    if not expected:
        # No key configured: allow all internal callers (local development)
        return
    if x_internal_api_key != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal API key",
        )
