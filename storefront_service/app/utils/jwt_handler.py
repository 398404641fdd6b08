"""
JWT Handler for Storefront Service

Decodes the bearer credential issued by the identity service and signs the
guest order tracking credential. Same token conventions as the other
services: HS256 by default, ``exp``/``iat`` claims, ``ValueError`` on any
decoding problem.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError
from pydantic import BaseModel

GUEST_TOKEN_TYPE = "guest_order"


class TokenData(BaseModel):
    """Token data model for decoded bearer tokens"""

    user_id: str
    email: str
    username: str
    roles: list[str] = []
    permissions: list[str] = []
    expires_at: datetime

    @property
    def role(self) -> str:
        return self.roles[0] if self.roles else "customer"


class GuestTokenData(BaseModel):
    """Decoded guest order tracking credential"""

    order_number: str
    email: str
    expires_at: datetime


class JWTHandler:
    """
    JWT token handler for encoding and decoding tokens.

    Bearer tokens are only decoded here; issuing them belongs to the
    identity service. Guest tracking credentials are both issued and
    verified by this service.
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        """
        Initialize JWT handler with secret key and algorithm.

        Args:
            secret_key: Secret key for token signing
            algorithm: JWT algorithm (default: HS256)
        """
        self.secret_key = secret_key
        self.algorithm = algorithm

    def encode_token(
        self,
        payload: Dict[str, Any],
        expires_delta: Optional[timedelta] = None,
        token_type: str = "access",
    ) -> str:
        """
        Encode payload into JWT token.

        Args:
            payload: Token payload data
            expires_delta: Token expiration time (default: 30 minutes)
            token_type: Value of the ``type`` claim

        Returns:
            Encoded JWT token string
        """
        to_encode = payload.copy()
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(minutes=30))

        to_encode.update(
            {
                "exp": expire,
                "iat": now.timestamp(),
                "type": token_type,
            }
        )

        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def _decode(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise ValueError("Token has expired")
        except JWTError as e:
            raise ValueError(f"Token validation failed: {e}")

    def decode_typed(self, token: str, token_type: str) -> Dict[str, Any]:
        """
        Decode a token and require its ``type`` claim to be ``token_type``.

        Raises:
            ValueError: If the token is invalid, expired or of another type
        """
        payload = self._decode(token)
        if payload.get("type") != token_type:
            raise ValueError(f"Expected a {token_type} token")
        return payload

    def decode_token(self, token: str) -> TokenData:
        """
        Decode and validate a bearer token.

        Raises:
            ValueError: If token is invalid, expired, or malformed
        """
        payload = self._decode(token)

        user_id = payload.get("user_id")
        exp = payload.get("exp")
        if not user_id or not exp:
            raise ValueError("Invalid token payload: missing user_id or exp")
        if payload.get("type") == GUEST_TOKEN_TYPE:
            raise ValueError("Guest credentials cannot be used as bearer tokens")

        roles = payload.get("roles") or []
        if not roles and payload.get("role"):
            roles = [payload["role"]]

        return TokenData(
            user_id=str(user_id),
            email=payload.get("email", ""),
            username=payload.get("username", ""),
            roles=roles,
            permissions=payload.get("permissions", []),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )

    def issue_guest_token(
        self, order_number: str, email: str, expire_days: int = 90
    ) -> str:
        """Sign the (order number, email) pair that lets a guest track an order."""
        return self.encode_token(
            {"order_number": order_number, "email": email.lower()},
            expires_delta=timedelta(days=expire_days),
            token_type=GUEST_TOKEN_TYPE,
        )

    def verify_guest_token(self, token: str) -> GuestTokenData:
        """
        Verify a guest tracking credential.

        Raises:
            ValueError: If the credential is invalid, expired or not a guest token
        """
        payload = self.decode_typed(token, GUEST_TOKEN_TYPE)
        order_number = payload.get("order_number")
        email = payload.get("email")
        exp = payload.get("exp")
        if not order_number or not email or not exp:
            raise ValueError("Invalid guest credential payload")

        return GuestTokenData(
            order_number=order_number,
            email=email,
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )
