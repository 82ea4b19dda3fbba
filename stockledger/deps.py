from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from stockledger.util.security import decode_token

auth_scheme = HTTPBearer(auto_error=False)

INVENTORY_EDIT = "INVENTORY_EDIT"
REPORTS_VIEW = "REPORTS_VIEW"
REPORTS_REBUILD = "REPORTS_REBUILD"

def require_claims(creds: HTTPAuthorizationCredentials | None = Depends(auth_scheme)) -> dict:
    if not creds:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        return decode_token(creds.credentials)
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

def require_auth(claims: dict = Depends(require_claims)) -> str:
    return claims["sub"]

def require_perm(code: str):
    def _dep(claims: dict = Depends(require_claims)) -> str:
        # Admin shortcut: role ADMIN → allow
        if "ADMIN" in (claims.get("roles") or []):
            return claims["sub"]
        if code not in (claims.get("perms") or []):
            raise HTTPException(status_code=403, detail=f"Missing permission: {code}")
        return claims["sub"]
    return _dep
