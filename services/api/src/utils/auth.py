from typing import Any, Dict, Optional

import jwt
from pydantic import BaseModel

from . import log

logger = log.get_logger(__name__)


class AuthClientConfig(BaseModel):
    jwk_url: Optional[str] = None
    audience: Optional[str] = None
    issuer: Optional[str] = None


class AuthClient:
    """Validates OIDC bearer tokens against the provider's JWK set."""

    ALGORITHMS = ["RS256", "ES256"]

    def __init__(self, config: AuthClientConfig):
        if not config.jwk_url:
            raise ValueError("AUTH_OIDC_JWK_URL is required when authentication is enabled")
        self.config = config
        self._jwks = jwt.PyJWKClient(config.jwk_url, cache_keys=True)

    def decode_jwt(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            signing_key = self._jwks.get_signing_key_from_jwt(token)
            return jwt.decode(
                token,
                signing_key.key,
                algorithms=self.ALGORITHMS,
                audience=self.config.audience,
                issuer=self.config.issuer,
                options={"verify_aud": bool(self.config.audience), "verify_iss": bool(self.config.issuer)},
            )
        except jwt.PyJWTError as e:
            logger.warning(f"Rejected bearer token: {e}")
            return None
