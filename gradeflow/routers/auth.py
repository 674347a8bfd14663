"""
Auth router — Login and current user profile.

Rules:
- Only users present in the users table can login
- Firebase mode: client signs in with the Firebase SDK, then calls /api/auth/me
- Mock mode: login returns a mock-{email} token for local testing
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from gradeflow.core.audit import record_audit
from gradeflow.core.config import settings
from gradeflow.core.dependencies import get_store
from gradeflow.core.security import get_current_user, profile_from_row, verify_password
from gradeflow.core.storage import MarksStore
from gradeflow.schemas.auth import UserLogin, UserProfile
from gradeflow.utils.response import success_response

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


@router.post("/login")
async def login(
    body: UserLogin,
    request: Request,
    store: MarksStore = Depends(get_store),
):
    if settings.AUTH_MODE != "mock":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Use Firebase SDK for login, then call /api/auth/me with JWT.",
        )

    row = await store.get_user_by_email(body.email)
    if not row:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No registered account found for this email.",
        )

    hashed_pw = row.get("password_hash")
    if not hashed_pw or not verify_password(body.password, hashed_pw):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password.",
        )

    user = profile_from_row(row)
    await record_audit(store, user, "LOGIN", "AUTH", entity_id=user["user_id"],
                       description=f"{user['email']} logged in", request=request)

    return success_response(
        data={"token": f"mock-{row['email']}", "user": user},
        message="Login successful",
    )


@router.get("/me")
async def me(user: dict = Depends(get_current_user)):
    return success_response(data=UserProfile(**user).model_dump())
