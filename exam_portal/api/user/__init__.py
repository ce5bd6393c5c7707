from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from exam_portal.models.user import User
from exam_portal.services.auth import (
    REFRESH,
    TokenPair,
    user_for_token,
    verify_password,
    get_current_user,
    require_admin,
    create_tokens,
    hash_password,
)
from exam_portal.utils.base import Conflict, InvalidInput


router = APIRouter()


class SignupBody(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(min_length=6)
    roll_no: str | None = None

@router.post("/signup", response_model=TokenPair, status_code=201)
def signup(body: SignupBody) -> TokenPair:
    # Reject duplicate email signups early
    if User.objects(email=body.email).first():
        raise Conflict("Email already registered")
    # Self-registration always creates students; return tokens so client is logged in
    user = User(name=body.name, email=body.email, password=hash_password(body.password), roll_no=body.roll_no)
    user.save()
    return create_tokens(user)


@router.post("/login", response_model=TokenPair)
def login(form_data: OAuth2PasswordRequestForm = Depends()) -> TokenPair:
    # Find user by email (username field of OAuth2PasswordRequestForm)
    user = User.objects(email=form_data.username).first()
    # Validate password; avoid leaking whether email exists
    if not user or not verify_password(form_data.password, user.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return create_tokens(user)


class RefreshBody(BaseModel):
    refresh_token: str

@router.post("/refresh", response_model=TokenPair)
def refresh_token(body: RefreshBody) -> TokenPair:
    # Rejects access tokens and tokens revoked by logout
    user = user_for_token(body.refresh_token, REFRESH)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    return create_tokens(user)


@router.post("/logout")
def logout(current_user: User = Depends(get_current_user)) -> dict:
    # Bump token_version so existing tokens become invalid immediately
    current_user.token_version = str(int(current_user.token_version) + 1)
    current_user.save()
    return {"status": True}


@router.get("")
def list_users(_: User = Depends(require_admin)) -> list[dict]:
    """ADMIN: All users, without credentials."""
    return [u.to_output() for u in User.objects.order_by("name")]


@router.get("/check/{email}")
def check_email(email: str) -> dict:
    """PUBLIC: Whether an email is already registered."""
    return {"exists": User.objects(email=email).first() is not None}


@router.get("/profile")
def get_profile(current_user: User = Depends(get_current_user)) -> dict:
    """PROTECTED: The caller's profile."""
    return current_user.to_output()


class ProfileBody(BaseModel):
    # Any other key is rejected as an invalid update
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    password: str | None = Field(None, min_length=6)

@router.put("/profile")
def update_profile(body: ProfileBody, current_user: User = Depends(get_current_user)) -> dict:
    """PROTECTED: Update the caller's name and/or password."""
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise InvalidInput("Invalid updates")
    if "name" in changes:
        current_user.name = changes["name"]
    if "password" in changes:
        current_user.password = hash_password(changes["password"])
    current_user.save()
    return current_user.to_output()
