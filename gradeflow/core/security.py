"""
Security module — Firebase JWT verification + Mock auth + Role guard.

Auth Flow:
1. User logs in via Firebase → gets JWT
2. Frontend sends JWT to FastAPI
3. FastAPI verifies JWT using Firebase Admin SDK
4. Backend fetches the user profile from the store (by email)
5. Backend checks: is user.is_active?
6. Backend injects: user_id, role, department
7. Routes guard themselves with require_role([...])

Only users already present in the users table can log in.
"""

import logging
import os

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gradeflow.core.config import settings
from gradeflow.core.dependencies import get_store
from gradeflow.core.errors import DependencyError
from gradeflow.core.storage import MarksStore

logger = logging.getLogger(__name__)

security_scheme = HTTPBearer()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            hashed_password.encode("utf-8"),
        )
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# Firebase initialization (lazy)
# ---------------------------------------------------------------------------
_firebase_app = None


def _init_firebase():
    global _firebase_app
    if _firebase_app is not None:
        return
    import firebase_admin
    from firebase_admin import credentials as fb_credentials

    cred_path = settings.FIREBASE_CREDENTIALS_PATH
    if os.path.exists(cred_path):
        cred = fb_credentials.Certificate(cred_path)
        _firebase_app = firebase_admin.initialize_app(cred)
    else:
        # Try default credentials
        _firebase_app = firebase_admin.initialize_app()


# ---------------------------------------------------------------------------
# Mock users (local development without Firebase)
# ---------------------------------------------------------------------------
MOCK_USERS = {
    "admin-token": {
        "uid": "admin-uid",
        "email": "admin@gradeflow.dev",
        "role": "admin",
        "name": "Admin",
        "user_id": "u-admin",
        "department": None,
    },
    "hod-token": {
        "uid": "hod-uid",
        "email": "hod.cse@gradeflow.dev",
        "role": "hod",
        "name": "CSE HOD",
        "user_id": "u-hod",
        "department": "CSE",
    },
    "faculty-token": {
        "uid": "faculty-uid",
        "email": "faculty.cse@gradeflow.dev",
        "role": "faculty",
        "name": "CSE Faculty",
        "user_id": "u-faculty",
        "department": "CSE",
    },
}


def profile_from_row(row: dict) -> dict:
    return {
        "uid": row.get("firebase_uid") or row["id"],
        "email": row["email"],
        "role": row["role"],
        "name": row.get("name", ""),
        "user_id": row["id"],
        "department": row.get("department"),
        "semester": row.get("semester"),
        "section": row.get("section"),
        "enrollment_number": row.get("enrollment_number"),
    }


# ---------------------------------------------------------------------------
# Token verification — the core auth function
# ---------------------------------------------------------------------------
async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security_scheme),
    store: MarksStore = Depends(get_store),
) -> dict:
    """Validate the Bearer token and return the user dict."""
    token = credentials.credentials

    if settings.AUTH_MODE == "mock":
        return await _mock_auth(token, store)

    return await _firebase_auth(token, store)


async def _mock_auth(token: str, store: MarksStore) -> dict:
    """Mock mode: look up token in MOCK_USERS or resolve a mock-{email} token."""
    user = MOCK_USERS.get(token)
    if user:
        return user

    if token.startswith("mock-"):
        try:
            row = await store.get_user_by_email(token[5:])
        except DependencyError:
            logger.warning("User lookup failed while resolving mock token")
            row = None
        if row:
            return profile_from_row(row)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid token. Only registered users can login.",
    )


async def _firebase_auth(token: str, store: MarksStore) -> dict:
    """Firebase mode: verify JWT, fetch profile from the store, enforce is_active."""
    _init_firebase()
    from firebase_admin import auth as fb_auth

    try:
        decoded = fb_auth.verify_id_token(token)
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired Firebase token",
        )

    row = await store.get_user_by_email(decoded.get("email", ""))
    if not row:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not registered. Contact your administrator.",
        )

    profile = profile_from_row(row)
    profile["uid"] = decoded["uid"]
    return profile


# ---------------------------------------------------------------------------
# Role guard dependency
# ---------------------------------------------------------------------------
def require_role(allowed_roles: list[str]):
    """
    Usage:
        @router.get("/admin-only")
        async def endpoint(user=Depends(require_role(["admin", "hod"]))):
    """

    async def role_checker(
        user: dict = Depends(get_current_user),
    ) -> dict:
        if user["role"] not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{user['role']}' not authorized. Required: {allowed_roles}",
            )
        return user

    return role_checker


ALL_ROLES = ["admin", "hod", "faculty", "student"]
STAFF_ROLES = ["admin", "hod", "faculty"]
