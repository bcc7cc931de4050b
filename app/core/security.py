import hashlib
import hmac
from datetime import timedelta
from typing import Any, Dict

import bcrypt
import jwt

from app.core.settings import Settings, settings as default_settings
from app.libs.formats.datetime import now_tzinfo


class SecurityService:
    """Session tokens (JWT) and password hashing, configured from Settings."""

    def __init__(self, settings: Settings | None = None):
        settings = settings or default_settings
        self.secret_key = settings.SECRET_KEY
        self.algorithm = settings.ALGORITHM
        self.token_ttl = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        self.bcrypt_rounds = settings.BCRYPT_ROUNDS

    # 🔐 JWT
    async def create_access_token(self, sub: str | int) -> str:
        issued_at = now_tzinfo()
        payload: Dict[str, Any] = {
            "sub": str(sub),
            "iat": issued_at,
            "exp": issued_at + self.token_ttl,
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    async def decode_access_token(self, token: str) -> Dict[str, Any]:
        """Raises ValueError("Token expired") / ValueError("Invalid token")."""
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise ValueError("Token expired")
        except jwt.InvalidTokenError:
            raise ValueError("Invalid token")

    # 🔑 PASSWORD
    async def hash_password(self, plain: str) -> str:
        salt = bcrypt.gensalt(rounds=self.bcrypt_rounds)
        return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    async def verify_password(plain: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False


# =========================================================
# 🧾 HMAC proofs (payment signature + webhook envelope)
# =========================================================
def sign_hex(secret: str, message: str | bytes) -> str:
    """hex(HMAC-SHA256(secret, message))."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_hex_signature(secret: str, message: str | bytes, provided: str | None) -> bool:
    if not secret or not provided:
        return False
    return hmac.compare_digest(sign_hex(secret, message), provided.strip().lower())


def payment_signature_payload(gateway_order_id: str, gateway_payment_id: str) -> str:
    return f"{gateway_order_id}|{gateway_payment_id}"
