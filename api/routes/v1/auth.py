"""
api/routes/v1/auth.py -- Passwordless sign-in and token lifecycle endpoints.

Routes:
  POST   /api/v1/auth/otp/request                      -- send a 6-digit code; 204
  POST   /api/v1/auth/otp/verify                       -- code -> token pair
  POST   /api/v1/auth/magic/request                    -- send a magic link; 204
  GET    /api/v1/auth/magic/verify?token=              -- link -> token pair (or cookies + 302)
  POST   /api/v1/auth/refresh                          -- rotate refresh token
  POST   /api/v1/auth/logout                           -- clear cookies; 204
  GET    /api/v1/auth/me                               -- current identity (requires auth)
  DELETE /api/v1/auth/rate-limits/{purpose}/{identifier} -- admin override

Security:
  [H2] Public request/verify endpoints are rate-limited per IP by slowapi, and
       per identifier by the auth core (otp / magic / login purposes).
  [M5] Cache-Control: no-store on every response that carries tokens.
  [C2] Magic-link redirects only ever target server-local paths.
  Request endpoints answer 204 whether or not the identifier belongs to an
  existing account -- no account enumeration.

Browser clients (User-Agent contains "Mozilla") receive the refresh token
as an httpOnly cookie instead of in the JSON body.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter, request_limit
from api.models import (
    MagicLinkRequest,
    MeResponse,
    OtpRequest,
    OtpVerify,
    RefreshRequest,
    TokenResponse,
    UserInfo,
)
from auth.dependencies import ACCESS_COOKIE, get_current_identity, require_role
from auth.magic_link import safe_redirect
from auth.models import AuthError, ResolvedIdentity, Role, User
from auth.service import AuthService
from auth.tokens import TokenPair

REFRESH_COOKIE = "refresh_token"

_STATUS: dict[AuthError, int] = {
    AuthError.rate_limited: 429,
    AuthError.blocked: 429,
    AuthError.not_found_or_expired: 400,
    AuthError.invalid_code: 400,
    AuthError.already_consumed: 400,
    AuthError.token_invalid: 403,
    AuthError.unauthenticated: 401,
    AuthError.forbidden: 403,
}

# Auth policy:
# - POST   /auth/otp/request, /auth/otp/verify:       public, per-IP + per-identifier limits
# - POST   /auth/magic/request, GET /auth/magic/verify: public, per-IP + per-identifier limits
# - POST   /auth/refresh:                             public -- the refresh token is the credential
# - POST   /auth/logout:                              public -- clearing cookies needs no prior auth
# - GET    /auth/me:                                  requires auth (get_current_identity)
# - DELETE /auth/rate-limits/...:                     requires admin (require_role(Role.admin))
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _auth(request: Request) -> AuthService:
    return request.app.state.auth


def _is_browser(request: Request) -> bool:
    return "Mozilla" in request.headers.get("user-agent", "")


def _fail(error: AuthError | None, message: str | None) -> HTTPException:
    error = error or AuthError.forbidden
    return HTTPException(
        status_code=_STATUS.get(error, 400),
        detail={"code": error.value, "message": message or "Request failed."},
    )


def _set_auth_cookies(request: Request, response: Response, pair: TokenPair) -> None:
    """Write both tokens as httpOnly cookies.

    samesite="lax" on the access cookie so it is sent on the top-level
    navigation that follows a magic-link redirect; samesite="strict" on the
    refresh cookie, which only the SPA's own refresh call needs.
    """
    settings = request.app.state.settings
    response.set_cookie(
        ACCESS_COOKIE,
        value=pair.access_token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.access_token_expire_seconds,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=pair.refresh_token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=settings.refresh_token_expire_seconds,
    )


def _token_response(request: Request, pair: TokenPair, user: User | None = None) -> JSONResponse:
    browser = _is_browser(request)
    body = TokenResponse(
        access_token=pair.access_token,
        refresh_token=None if browser else pair.refresh_token,
        expires_in=pair.expires_in,
        user=UserInfo.from_user(user) if user is not None else None,
    )
    resp = JSONResponse(status_code=200, content=body.model_dump())
    if browser:
        _set_auth_cookies(request, resp, pair)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# One-time codes
# ---------------------------------------------------------------------------


@limiter.limit(request_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/otp/request", status_code=204)
def request_otp(request: Request, body: OtpRequest) -> Response:
    """Send a one-time code to the phone number or email address in the body."""
    result = _auth(request).request_otp(body.identifier)
    if not result.success:
        raise _fail(result.error, result.message)
    return Response(status_code=204)


@limiter.limit(request_limit)  # [H2]
@router.post("/auth/otp/verify", response_model=TokenResponse)
def verify_otp(request: Request, body: OtpVerify) -> JSONResponse:
    """Exchange a valid code for a token pair, creating the account on first sign-in.

    The login limiter caps verification calls per identifier on top of the
    OTP manager's own attempt counter, so rotating codes does not reset the
    budget. A successful sign-in clears it; only failed calls accumulate.
    """
    auth = _auth(request)
    if not auth.limiters["login"].check_limit(body.identifier).allowed:
        raise _fail(AuthError.rate_limited, "Too many requests. Please try again later.")

    result = auth.verify_otp(body.identifier, body.code)
    if not result.ok:
        raise _fail(result.error, result.message)
    auth.limiters["login"].reset(body.identifier)
    return _token_response(request, result.tokens, result.user)


# ---------------------------------------------------------------------------
# Magic links
# ---------------------------------------------------------------------------


@limiter.limit(request_limit)  # [H2]
@router.post("/auth/magic/request", status_code=204)
def request_magic_link(request: Request, body: MagicLinkRequest) -> Response:
    """Email a single-use sign-in link."""
    result = _auth(request).request_magic_link(body.email, body.redirect_url)
    if not result.success:
        raise _fail(result.error, result.message)
    return Response(status_code=204)


@limiter.limit(request_limit)  # [H2]
@router.get("/auth/magic/verify", response_model=TokenResponse)
def verify_magic_link(request: Request, token: str = "") -> Response:
    """Consume a magic link.

    Browsers get both tokens as cookies and a 302 to the stored redirect path;
    API clients get the token pair as JSON.
    """
    if not token:
        raise HTTPException(
            status_code=400,
            detail={"code": "token_required", "message": "Token required"},
        )

    result = _auth(request).verify_magic_link(token)
    if not result.ok:
        raise _fail(result.error, result.message)

    if _is_browser(request):
        resp = RedirectResponse(safe_redirect(result.redirect_url), status_code=302)  # [C2]
        _set_auth_cookies(request, resp, result.tokens)
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp
    return _token_response(request, result.tokens, result.user)


# ---------------------------------------------------------------------------
# Token lifecycle
# ---------------------------------------------------------------------------


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest | None = None) -> JSONResponse:
    """Rotate a refresh token (from the body, else the cookie) into a new pair."""
    raw = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    if not raw:
        raise HTTPException(
            status_code=401,
            detail={"code": AuthError.unauthenticated.value, "message": "Refresh token required"},
        )

    result = _auth(request).refresh(raw)
    if not result.ok:
        raise _fail(result.error, result.message)
    return _token_response(request, result.tokens)


@router.post("/auth/logout", status_code=204)
def logout() -> Response:
    """Clear both auth cookies.

    Stateless tokens stay valid until they expire; clients holding them in
    memory must discard them.
    """
    resp = Response(status_code=204)
    resp.delete_cookie(ACCESS_COOKIE)
    resp.delete_cookie(REFRESH_COOKIE)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, identity: ResolvedIdentity = Depends(get_current_identity)) -> MeResponse:
    """Return the current principal and the role they are acting as."""
    user = _auth(request).users.get_by_id(identity.user_id)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found"},
        )
    return MeResponse.from_identity(identity, user)


@router.delete("/auth/rate-limits/{purpose}/{identifier}", status_code=204)
def reset_rate_limit(
    request: Request,
    purpose: str,
    identifier: str,
    _admin: ResolvedIdentity = Depends(require_role(Role.admin)),
) -> Response:
    """Clear one rate-limit counter. Admin only; not part of any user flow."""
    if not _auth(request).reset_rate_limit(purpose, identifier):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Unknown rate-limit purpose: {purpose}"},
        )
    return Response(status_code=204)
