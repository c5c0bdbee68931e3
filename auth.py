import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from bson.errors import InvalidId
from bson.objectid import ObjectId
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

from database import create_document
from schemas import Account

logger = structlog.get_logger(__name__)

JWT_ALGO = "HS256"
security = HTTPBearer(auto_error=False)


class EmailTaken(Exception):
    pass


class InvalidCredentials(Exception):
    pass


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


class AuthProvider:
    """Email/password accounts issuing JWT sessions that carry a stable uid."""

    def __init__(self, db: Database, secret: str, ttl_days: int = 7):
        self.db = db
        self.secret = secret
        self.ttl_days = ttl_days

    def create_token(self, payload: dict) -> str:
        exp = datetime.now(timezone.utc) + timedelta(days=self.ttl_days)
        to_encode = {**payload, "exp": exp}
        return jwt.encode(to_encode, self.secret, algorithm=JWT_ALGO)

    def decode_token(self, token: str) -> dict:
        try:
            return jwt.decode(token, self.secret, algorithms=[JWT_ALGO])
        except jwt.ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except jwt.InvalidTokenError:
            raise HTTPException(status_code=401, detail="Invalid token")

    def create_account(self, email: str, password: str) -> dict:
        if self.db["account"].find_one({"email": email}):
            raise EmailTaken(email)
        account = Account(email=email, password_hash=hash_password(password))
        uid = create_document(self.db, "account", account)
        logger.info("account_created", uid=uid)
        return self._session(uid, email)

    def sign_in(self, email: str, password: str) -> dict:
        account = self.db["account"].find_one({"email": email})
        if not account or account.get("password_hash") != hash_password(password):
            raise InvalidCredentials(email)
        return self._session(str(account["_id"]), email)

    def lookup(self, uid: str) -> Optional[dict]:
        try:
            account = self.db["account"].find_one({"_id": ObjectId(uid)})
        except InvalidId:
            return None
        if not account:
            return None
        return {"uid": str(account["_id"]), "email": account["email"]}

    def _session(self, uid: str, email: str) -> dict:
        token = self.create_token({"uid": uid, "email": email})
        return {"token": token, "user": {"uid": uid, "email": email}}


def _provider(request: Request) -> AuthProvider:
    return request.app.state.backend.auth


def optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[dict]:
    if credentials is None:
        return None
    provider = _provider(request)
    payload = provider.decode_token(credentials.credentials)
    uid = payload.get("uid")
    if not uid:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return provider.lookup(uid)


def get_current_user(user: Optional[dict] = Depends(optional_user)) -> dict:
    if user is None:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
