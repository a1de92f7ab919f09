"""
Ledger authentication.

Passwords are bcrypt hashes (passlib). Access tokens are HS256 JWTs that carry
the caller's user id, role and agency so every ledger route can scope its work
without decoding more than the bearer header. Tokens are short lived; there is
no refresh flow, clients log in again.
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
import logging

import jwt
from passlib.context import CryptContext
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config import JWT_SECRET_KEY, ACCESS_TOKEN_EXPIRE_MINUTES

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
TOKEN_ISSUER = "agency-ledger"
ACCESS_TOKEN_TYPE = "access"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

bearer_scheme = HTTPBearer()


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Stored value is not a recognised hash
        return False


def token_claims_for(user: Dict[str, Any]) -> Dict[str, Any]:
    """Claims a ledger access token carries for one stored user"""
    return {
        "user_id": user["_id"],
        "role": user["role"],
        "agency_id": user.get("agency_id"),
    }


def create_access_token(claims: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    issued_at = datetime.utcnow()
    lifetime = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = dict(claims)
    payload.update({
        "iss": TOKEN_ISSUER,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "type": ACCESS_TOKEN_TYPE,
    })
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=ALGORITHM)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode a ledger access token; any defect is a 401"""
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[ALGORITHM], issuer=TOKEN_ISSUER)
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Access token has expired. Please login again.")
    except jwt.InvalidTokenError as e:
        logger.info(f"[AUTH] Rejected token: {e}")
        raise _unauthorized("Could not validate credentials")

    if payload.get("type") != ACCESS_TOKEN_TYPE or payload.get("user_id") is None:
        raise _unauthorized("Invalid authentication credentials")

    return payload


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> Dict[str, Any]:
    """Route dependency: the decoded claims of the bearer token"""
    return decode_access_token(credentials.credentials)
