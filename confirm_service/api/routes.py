"""HTTP route definitions for the confirm service."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, EmailStr

from ..config import get_settings
from ..domain.account import Account
from ..domain.confirm import FORM_VALUE_CONFIRM
from ..domain.contracts import CreateAccountInput
from ..domain.service import AccountService, TokenBundle
from ..errors import (
    AccountExistsError,
    AccountNotFoundError,
    ClientDataError,
    ConfirmError,
    InvalidTokenError,
    RedirectError,
)
from ..security.sessions import FLASH_ERROR_KEY, FLASH_SUCCESS_KEY, SESSION_KEY, Session

logger = logging.getLogger(__name__)

settings = get_settings()

router = APIRouter(prefix="/v1")

_mount = settings.mount_path.strip("/")
confirm_router = APIRouter(prefix=f"/{_mount}" if _mount else "")


class AccountResponse(BaseModel):
    """Serialised representation of an `Account` aggregate."""

    account_id: str
    email: EmailStr
    confirmed: bool
    created_at: datetime

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        return cls(
            account_id=account.account_id,
            email=account.email,
            confirmed=account.confirmed,
            created_at=account.created_at,
        )


class CreateAccountRequest(BaseModel):
    """Payload accepted when registering an account."""

    email: EmailStr


class TokenRequest(BaseModel):
    """JSON body used to log in and obtain a JWT for an account."""

    account_id: str
    scopes: list[str] | None = None


class TokenResponse(BaseModel):
    """Token issuance response containing the bearer token and metadata."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: str
    refresh_expires_in: int
    account_id: str

    @classmethod
    def from_bundle(cls, bundle: TokenBundle) -> "TokenResponse":
        return cls(
            access_token=bundle.access_token,
            expires_in=bundle.access_expires_in,
            refresh_token=bundle.refresh_token,
            refresh_expires_in=bundle.refresh_expires_in,
            account_id=bundle.account_id,
        )


class RefreshTokenRequest(BaseModel):
    """Request body for exchanging refresh tokens for new access credentials."""

    refresh_token: str
    scopes: list[str] | None = None


class FlashResponse(BaseModel):
    success: str | None = None
    error: str | None = None


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_session(request: Request) -> Session:
    """Bind the session store to the caller's session cookie, minting one if absent."""
    return Session(
        request.app.state.session_store,
        request.cookies.get(settings.session_cookie_name),
    )


def _attach_session(response: Response, session: Session) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        session.session_id,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        samesite="lax",
    )


def _redirect(
    session: Session,
    location: str,
    *,
    success: str | None = None,
    error: str | None = None,
) -> RedirectResponse:
    """Redirect with a flash message parked in the caller's session."""
    if success:
        session.put(FLASH_SUCCESS_KEY, success)
    if error:
        session.put(FLASH_ERROR_KEY, error)
    response = RedirectResponse(location, status_code=status.HTTP_302_FOUND)
    _attach_session(response, session)
    return response


def _http_error(exc: ConfirmError) -> HTTPException:
    if isinstance(exc, ClientDataError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, AccountNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, AccountExistsError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, InvalidTokenError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal error")


@router.post("/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def register_account(
    payload: CreateAccountRequest,
    service: AccountService = Depends(get_service),
) -> AccountResponse:
    """Register an account; it stays locked until the e-mailed link is followed."""
    try:
        account = service.register(CreateAccountInput(email=payload.email))
    except AccountExistsError as exc:
        raise _http_error(exc) from exc
    return AccountResponse.from_domain(account)


@router.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: str,
    service: AccountService = Depends(get_service),
) -> AccountResponse:
    account = service.get_account(account_id)
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="account not found")
    return AccountResponse.from_domain(account)


@router.get("/me", response_model=AccountResponse)
def current_account(
    service: AccountService = Depends(get_service),
    session: Session = Depends(get_session),
):
    """Return the account logged in on this session."""
    account_id = session.get(SESSION_KEY)
    if not account_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not logged in")
    try:
        account = service.load_account(account_id, session)
    except RedirectError as exc:
        return _redirect(session, exc.location, error=exc.message)
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not logged in") from exc
    return AccountResponse.from_domain(account)


@router.get("/flash", response_model=FlashResponse)
def pop_flash(session: Session = Depends(get_session)) -> FlashResponse:
    """Return and clear the flash messages left by the last redirect."""
    return FlashResponse(success=session.pop(FLASH_SUCCESS_KEY), error=session.pop(FLASH_ERROR_KEY))


@router.post("/token", response_model=TokenResponse)
def issue_token(
    payload: TokenRequest,
    service: AccountService = Depends(get_service),
    session: Session = Depends(get_session),
):
    """Log in: issue a signed access token for a confirmed account."""
    try:
        bundle = service.issue_token(payload.account_id, payload.scopes)
    except RedirectError as exc:
        return _redirect(session, exc.location, error=exc.message)
    except AccountNotFoundError as exc:
        raise _http_error(exc) from exc
    return TokenResponse.from_bundle(bundle)


@router.post("/token/refresh", response_model=TokenResponse)
def refresh_token(
    payload: RefreshTokenRequest,
    service: AccountService = Depends(get_service),
    session: Session = Depends(get_session),
):
    try:
        bundle = service.refresh_access_token(payload.refresh_token, payload.scopes)
    except RedirectError as exc:
        return _redirect(session, exc.location, error=exc.message)
    except InvalidTokenError as exc:
        raise _http_error(exc) from exc
    return TokenResponse.from_bundle(bundle)


def _redeem(service: AccountService, session: Session, token: str) -> RedirectResponse:
    try:
        result = service.confirm(token, session)
    except ClientDataError as exc:
        raise _http_error(exc) from exc
    except RedirectError as exc:
        return _redirect(session, exc.location, error=exc.message)
    return _redirect(session, result.location, success=result.message)


@confirm_router.api_route("/confirm", methods=["GET", "POST"], response_class=RedirectResponse)
async def confirm_account(
    request: Request,
    cnf: str = Query(default="", alias=FORM_VALUE_CONFIRM),
    service: AccountService = Depends(get_service),
    session: Session = Depends(get_session),
) -> RedirectResponse:
    """Redeem the token from a confirmation e-mail.

    The token is read from the query string and, on POST, from the form body.
    """
    token = cnf
    if not token and request.method == "POST":
        form = await request.form()
        value = form.get(FORM_VALUE_CONFIRM)
        if isinstance(value, str):
            token = value
    return await run_in_threadpool(_redeem, service, session, token)
