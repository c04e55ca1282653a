import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from stockbook.core.api_docs import error_responses
from stockbook.core.deps import get_db
from stockbook.core.rate_limit import login_rate_limiter
from stockbook.core.security import (
    TokenValidationError,
    create_access_token,
    create_refresh_token,
    get_token_metadata,
    hash_password,
    verify_password,
)
from stockbook.core.security_current import BusinessAccess, get_current_business_access, get_current_user
from stockbook.core.time_utils import as_utc, utc_now
from stockbook.models.account import RefreshToken, User
from stockbook.schemas.auth import (
    ChangePasswordIn,
    LoginIn,
    RefreshIn,
    RegisterIn,
    TokenOut,
    UpdateProfileIn,
    UserProfileOut,
)
from stockbook.services.account_service import (
    EmailAlreadyRegisteredError,
    provision_account,
    provision_invited_account,
    slugify_username,
    username_taken,
)
from stockbook.services.activity_service import log_audit_event
from stockbook.services.team_invitation_service import (
    InvitationEmailMismatchError,
    InvitationError,
    InvitationNotFoundError,
)

router = APIRouter(prefix="/auth", tags=["auth"])
TOKEN_PAIR_RESPONSE = {
    200: {
        "description": "Access and refresh tokens",
        "content": {
            "application/json": {
                "example": {
                    "access_token": "access-token",
                    "refresh_token": "refresh-token",
                    "token_type": "bearer",
                }
            }
        },
    }
}


def _client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for", "").strip()
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _profile_out(user: User, access: BusinessAccess) -> UserProfileOut:
    return UserProfileOut(
        id=user.id,
        email=user.email,
        username=user.username,
        full_name=user.full_name,
        business_id=access.business.id,
        business_name=access.business.name,
        role=access.role,
        created_at=as_utc(user.created_at),
        updated_at=as_utc(user.updated_at),
    )


def _check_login(db: Session, request: Request, identifier: str, password: str) -> User:
    key = f"{identifier.strip().lower()}:{_client_ip(request)}"
    retry_after = login_rate_limiter.check(key)
    if retry_after > 0:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed attempts. Try again later.",
            headers={"Retry-After": str(retry_after)},
        )

    normalized = identifier.strip().lower()
    user = db.execute(
        select(User).where(
            or_(func.lower(User.email) == normalized, func.lower(User.username) == normalized)
        )
    ).scalar_one_or_none()
    if not user or not user.is_active or not verify_password(password, user.hashed_password):
        login_rate_limiter.register_failure(key)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    login_rate_limiter.register_success(key)
    return user


def _issue_token_pair(db: Session, *, user_id: str, client_ip: str | None = None) -> tuple[TokenOut, str]:
    access_token = create_access_token(user_id)
    refresh_token = create_refresh_token(user_id)
    refresh_meta = get_token_metadata(refresh_token, expected_type="refresh")

    db.add(
        RefreshToken(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token_jti=refresh_meta.jti,
            expires_at=refresh_meta.expires_at,
            created_by_ip=client_ip,
        )
    )
    return TokenOut(access_token=access_token, refresh_token=refresh_token), refresh_meta.jti


def _revoke_refresh_tokens(db: Session, *conditions) -> None:
    db.execute(
        update(RefreshToken)
        .where(RefreshToken.revoked_at.is_(None), *conditions)
        .values(revoked_at=utc_now())
    )


@router.post(
    "/register",
    response_model=TokenOut,
    summary="Register a user",
    description=(
        "Creates a user, their business with an admin membership and the default "
        "warehouse, then returns access + refresh tokens. With an invitation token the user "
        "joins the inviting business with the invited role instead."
    ),
    responses={**TOKEN_PAIR_RESPONSE, **error_responses(400, 403, 404, 422, 500)},
)
def register(payload: RegisterIn, request: Request, db: Session = Depends(get_db)):
    if payload.invitation_token:
        try:
            user, membership, invitation = provision_invited_account(
                db,
                invitation_token=payload.invitation_token,
                email=payload.email,
                password=payload.password,
                full_name=payload.full_name,
                username=payload.username,
            )
        except InvitationNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except InvitationEmailMismatchError as exc:
            raise HTTPException(status_code=403, detail=str(exc)) from exc
        except (InvitationError, EmailAlreadyRegisteredError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        log_audit_event(
            db,
            business_id=invitation.business_id,
            actor_user_id=user.id,
            action="team.invitation.accepted",
            target_type="team_invitation",
            target_id=invitation.id,
            metadata_json={"email": invitation.email, "role": membership.role, "registered": True},
        )
        user_id = user.id
    else:
        try:
            account = provision_account(
                db,
                email=payload.email,
                password=payload.password,
                full_name=payload.full_name,
                username=payload.username,
                business_name=payload.business_name,
            )
        except EmailAlreadyRegisteredError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        user_id = account.user.id

    token_pair, _ = _issue_token_pair(db, user_id=user_id, client_ip=_client_ip(request))
    db.commit()
    return token_pair


@router.post(
    "/login",
    response_model=TokenOut,
    summary="Login with JSON",
    description="Authenticate with email/username and password.",
    responses={**TOKEN_PAIR_RESPONSE, **error_responses(401, 422, 429, 500)},
)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_db)):
    user = _check_login(db, request, payload.identifier, payload.password)
    token_pair, _ = _issue_token_pair(db, user_id=user.id, client_ip=_client_ip(request))
    db.commit()
    return token_pair


@router.post(
    "/token",
    response_model=TokenOut,
    summary="OAuth2 password token (Swagger Authorize)",
    description="Form-data login. Use your email or username in the `username` field.",
    responses={**TOKEN_PAIR_RESPONSE, **error_responses(401, 422, 429, 500)},
)
def login_form(
    request: Request,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
):
    user = _check_login(db, request, form_data.username, form_data.password)
    token_pair, _ = _issue_token_pair(db, user_id=user.id, client_ip=_client_ip(request))
    db.commit()
    return token_pair


@router.get(
    "/me",
    response_model=UserProfileOut,
    summary="Get current user profile",
    responses=error_responses(401, 404, 500),
)
def get_my_profile(
    user: User = Depends(get_current_user),
    access: BusinessAccess = Depends(get_current_business_access),
):
    return _profile_out(user, access)


@router.patch(
    "/me",
    response_model=UserProfileOut,
    summary="Update current user profile",
    description="Updates full name and username; admins may also rename the business.",
    responses=error_responses(400, 401, 403, 422, 500),
)
def update_my_profile(
    payload: UpdateProfileIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    access: BusinessAccess = Depends(get_current_business_access),
):
    if payload.full_name is not None:
        user.full_name = payload.full_name

    if payload.username is not None:
        normalized_username = slugify_username(payload.username)
        if username_taken(db, normalized_username, exclude_user_id=user.id):
            raise HTTPException(status_code=400, detail="Username already taken")
        user.username = normalized_username

    if payload.business_name is not None:
        if access.role != "admin":
            raise HTTPException(status_code=403, detail="Only admins can rename the business")
        access.business.name = payload.business_name

    db.commit()
    db.refresh(user)
    db.refresh(access.business)
    return _profile_out(user, access)


@router.post(
    "/refresh",
    response_model=TokenOut,
    summary="Refresh access token",
    description="Rotates a valid refresh token into a fresh token pair.",
    responses={**TOKEN_PAIR_RESPONSE, **error_responses(401, 422, 500)},
)
def refresh_tokens(payload: RefreshIn, request: Request, db: Session = Depends(get_db)):
    try:
        refresh_meta = get_token_metadata(payload.refresh_token, expected_type="refresh")
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    now = utc_now()
    token_row = db.execute(
        select(RefreshToken).where(
            RefreshToken.token_jti == refresh_meta.jti,
            RefreshToken.user_id == refresh_meta.subject,
        )
    ).scalar_one_or_none()
    if not token_row or token_row.revoked_at is not None or as_utc(token_row.expires_at) <= now:
        raise HTTPException(status_code=401, detail="Refresh token is invalid or expired")

    token_row.revoked_at = now
    token_pair, new_jti = _issue_token_pair(db, user_id=refresh_meta.subject, client_ip=_client_ip(request))
    token_row.replaced_by_jti = new_jti
    db.commit()
    return token_pair


@router.post(
    "/logout",
    summary="Logout (revoke refresh token)",
    responses=error_responses(422, 500),
)
def logout(payload: RefreshIn, db: Session = Depends(get_db)):
    try:
        refresh_meta = get_token_metadata(payload.refresh_token, expected_type="refresh")
    except TokenValidationError:
        return {"ok": True}

    _revoke_refresh_tokens(db, RefreshToken.token_jti == refresh_meta.jti)
    db.commit()
    return {"ok": True}


@router.post(
    "/change-password",
    summary="Change password",
    description="Changes password and revokes every active refresh token of the user.",
    responses=error_responses(400, 401, 422, 500),
)
def change_password(
    payload: ChangePasswordIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not verify_password(payload.current_password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    if payload.current_password == payload.new_password:
        raise HTTPException(status_code=400, detail="New password must be different")

    user.hashed_password = hash_password(payload.new_password)
    _revoke_refresh_tokens(db, RefreshToken.user_id == user.id)
    db.commit()
    return {"ok": True}
