"""Guest token signing and verification."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import jwt

from config import ApplicationConfig
from models import Identity, TokenClaims
from utils import Clock, TokenError, TokenExpired, utc_now

REQUIRED_CLAIMS = ["sub", "quota_used", "quota_limit", "iat", "exp", "jti"]


def _to_timestamp(moment: datetime) -> int:
    return int(moment.timestamp())


def _from_timestamp(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class TokenCodec:
    """Signs and verifies compact guest claims. Holds no storage."""

    def __init__(self, config: ApplicationConfig, clock: Clock = utc_now) -> None:
        self.secret = config.jwt_secret
        self.algorithm = config.jwt_algorithm
        self.leeway = config.token_expiry_leeway_seconds
        self.clock = clock

    def issue(self, identity: Identity) -> Tuple[str, TokenClaims]:
        """Sign a token for the identity's current snapshot.

        The token expires together with the identity.
        """
        claims = TokenClaims(
            sub=identity.id,
            display_name=identity.display_name,
            quota_used=identity.quota_used,
            quota_limit=identity.quota_limit,
            iat=self.clock().replace(microsecond=0),
            exp=identity.expires_at.replace(microsecond=0),
            jti=str(uuid.uuid4()),
        )
        payload = {
            "sub": claims.sub,
            "display_name": claims.display_name,
            "quota_used": claims.quota_used,
            "quota_limit": claims.quota_limit,
            "iat": _to_timestamp(claims.iat),
            "exp": _to_timestamp(claims.exp),
            "jti": claims.jti,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm), claims

    def _decode(self, token: str, verify_signature: bool = True) -> Dict[str, Any]:
        # Expiry is checked against the injected clock rather than wall time.
        return jwt.decode(
            token,
            self.secret,
            algorithms=[self.algorithm],
            options={
                "verify_signature": verify_signature,
                "verify_exp": False,
                "verify_iat": False,
                "require": REQUIRED_CLAIMS,
            },
        )

    @staticmethod
    def _claims_from(payload: Dict[str, Any]) -> TokenClaims:
        return TokenClaims(
            sub=payload["sub"],
            display_name=payload.get("display_name", ""),
            quota_used=payload["quota_used"],
            quota_limit=payload["quota_limit"],
            iat=_from_timestamp(payload["iat"]),
            exp=_from_timestamp(payload["exp"]),
            jti=payload["jti"],
        )

    def verify(self, token: str) -> TokenClaims:
        """Check signature and expiry.

        Raises:
            TokenExpired: signature valid but expiry (plus leeway) has passed.
            TokenError: malformed token, bad signature or missing claims.
        """
        try:
            payload = self._decode(token)
            claims = self._claims_from(payload)
        except jwt.PyJWTError as e:
            raise TokenError("Invalid token", {"reason": str(e)}) from e
        except (KeyError, TypeError, ValueError) as e:
            raise TokenError("Invalid token claims", {"reason": str(e)}) from e

        if _to_timestamp(self.clock()) >= _to_timestamp(claims.exp) + self.leeway:
            raise TokenExpired(claims.exp)
        return claims

    def decode_unverified(self, token: str) -> Optional[TokenClaims]:
        """Read claims without checking the signature, for diagnostics."""
        try:
            return self._claims_from(self._decode(token, verify_signature=False))
        except (jwt.PyJWTError, KeyError, TypeError, ValueError):
            return None

    def seconds_until_expiry(self, token: str) -> int:
        claims = self.decode_unverified(token)
        if claims is None:
            return 0
        return max(0, _to_timestamp(claims.exp) - _to_timestamp(self.clock()))

    def accepted_until(self, claims: TokenClaims) -> datetime:
        """Last moment ``verify`` still accepts a token with these claims."""
        return claims.exp + timedelta(seconds=self.leeway)
