import jwt
from datetime import datetime, timedelta, timezone
from stockledger.config import settings

# Tokens are issued by the identity service; create_token exists for dev and tests.
def create_token(sub: str, perms: list[str] | None = None, roles: list[str] | None = None,
                 ttl_min: int = 60) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=ttl_min)
    payload = {"sub": sub, "iss": settings.JWT_ISS, "iat": int(now.timestamp()), "exp": int(exp.timestamp()),
               "perms": perms or [], "roles": roles or []}
    return jwt.encode(payload, settings.APP_SECRET, algorithm="HS256")

def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.APP_SECRET, algorithms=["HS256"], issuer=settings.JWT_ISS,
                      options={"verify_aud": False, "require": ["sub", "exp"]})
