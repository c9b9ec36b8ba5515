"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints used by the revision planner.
Controllers are intentionally thin: they resolve the caller, delegate to
services, and return JSON responses. Errors raised by services are turned
into `{"error": ...}` bodies by the handlers in `planner.errors`.

Endpoints implemented:
- POST /auth/register, POST /auth/login
- GET /api/attribution
- GET|POST /api/onboarding/progress, POST /api/onboarding/save,
  POST /api/onboarding/save-name-year, POST /api/onboarding/reached-payment
- GET /api/settings, POST /api/settings/time-preferences
- GET /api/topics/ratings, POST /api/topics/save-rating|save-ratings-bulk
- GET /api/plan/payments, GET /api/plan/blocks
- POST /api/plan/mark-done|mark-missed|skip|mark-scheduled
- POST /api/refund/request
- GET /api/stats
- POST /api/support
- GET /api/dev/status, POST /api/dev/* (development only)
"""

from fastapi import FastAPI, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
import os
import json
import logging
import time
import uuid
from typing import Optional
from .database import create_db_and_tables, get_session
from . import services, repositories, models
from .auth import (
    get_current_user,
    get_optional_user,
    get_user_or_dev_user,
    get_user_or_dev_user_in_development,
)
from .config import settings
from .errors import AuthenticationRequired, StoreError, ValidationFailed, register_error_handlers
from .schemas import (
    BlockAction,
    LoginIn,
    NameYearIn,
    OnboardingSaveIn,
    ProgressIn,
    RefundRequestIn,
    RegisterIn,
    SupportIn,
    TimePreferencesIn,
    TopicRatingIn,
    TopicRatingsBulkIn,
)
from .utils import rate_limit
from .utils.dev_tools import dev_tools_visible, require_development
from .utils.utm import (
    UTM_COOKIE_NAME,
    clear_utm_cookie,
    parse_utm_cookie,
    utm_capture_middleware,
)

app = FastAPI(title="Revision Planner API")
logger = logging.getLogger("planner.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

register_error_handlers(app)

# Wide-open CORS keeps a locally served web client working without extra config in dev.
if settings.ALLOW_DEV_CORS and settings.is_development:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()

app.middleware("http")(utm_capture_middleware)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/api"):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
    return response


def dev_user(
    _: None = Depends(require_development),
    user: models.User = Depends(get_user_or_dev_user),
) -> models.User:
    """Development-only caller: the signed-in user or the shared dev user."""
    return user


@app.post('/auth/register')
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new user (idempotent).

    Returns the existing user if the email is already registered so the
    call is safe to repeat from automation and tests.
    """
    existing = repositories.UserRepository(db).get_by_email(payload.email.strip().lower())
    if existing:
        return {'id': existing.id, 'email': existing.email}
    user = services.AuthService(db).register(payload.email, payload.password, payload.name)
    return {'id': user.id, 'email': user.email}


@app.post('/auth/login')
def login(payload: LoginIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a short-lived JWT token."""
    token = services.AuthService(db).authenticate(payload.email, payload.password)
    if not token:
        raise AuthenticationRequired('invalid credentials')
    return {'access_token': token}


@app.get('/api/attribution')
def attribution(request: Request, db: Session = Depends(get_session), user: Optional[models.User] = Depends(get_optional_user)):
    """Save UTM attribution captured at landing onto the signed-in user.

    Called once by the client after sign-in. Clears the cookie when the
    values were stored.
    """
    if user is None:
        return {'ok': True, 'attributed': False}
    utm = parse_utm_cookie(request.cookies.get(UTM_COOKIE_NAME))
    if utm is None:
        return {'ok': True, 'attributed': False}
    try:
        services.AttributionService(db).attribute(user, utm)
    except StoreError as e:
        return JSONResponse(status_code=500, content={'ok': False, 'error': e.message})
    response = JSONResponse(content={'ok': True, 'attributed': True})
    clear_utm_cookie(response)
    return response


@app.get('/api/onboarding/progress')
def get_onboarding_progress(user: models.User = Depends(get_current_user)):
    return {'maxUnlockedSlide': services.OnboardingService.max_unlocked_slide(user)}


@app.post('/api/onboarding/progress')
def save_onboarding_progress(payload: ProgressIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Persist the furthest onboarding slide so progress survives a device switch."""
    rate_limit.enforce(rate_limit.MODERATE, user.id)
    raw = payload.maxUnlockedSlide if payload.maxUnlockedSlide is not None else payload.max_unlocked_slide
    return services.OnboardingService(db).update_progress(user, raw)


@app.post('/api/onboarding/save')
def save_onboarding(payload: OnboardingSaveIn, db: Session = Depends(get_session), user: models.User = Depends(get_user_or_dev_user)):
    """Store the full set of onboarding answers."""
    if payload.quizAnswers is None:
        raise ValidationFailed('Quiz answers are required')
    return services.OnboardingService(db).save_quiz_answers(user, payload.quizAnswers)


@app.post('/api/onboarding/save-name-year')
def save_name_year(payload: NameYearIn, db: Session = Depends(get_session), user: models.User = Depends(get_user_or_dev_user)):
    """Capture name and school year as soon as they are entered."""
    rate_limit.enforce(rate_limit.MODERATE, user.id)
    return services.OnboardingService(db).save_name_year(user, payload.name, payload.year)


@app.post('/api/onboarding/reached-payment')
def reached_payment(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Record the first time the user reaches the payment page."""
    return services.OnboardingService(db).record_reached_payment(user)


@app.get('/api/settings')
def read_settings(user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return services.SettingsService(db).get(user)


@app.post('/api/settings/time-preferences')
def update_time_preferences(payload: TimePreferencesIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    rate_limit.enforce(rate_limit.MODERATE, user.id)
    return services.SettingsService(db).update_time_preferences(user, payload)


@app.get('/api/topics/ratings')
def list_topic_ratings(db: Session = Depends(get_session), user: models.User = Depends(get_user_or_dev_user_in_development)):
    """Every rating the caller has, including 0 and the negative markers."""
    return {'success': True, 'ratings': services.TopicRatingService(db).list_ratings(user.id)}


@app.post('/api/topics/save-rating')
def save_topic_rating(payload: TopicRatingIn, db: Session = Depends(get_session), user: models.User = Depends(get_user_or_dev_user_in_development)):
    return services.TopicRatingService(db).save_rating(user.id, payload.topic_id, payload.rating)


@app.post('/api/topics/save-ratings-bulk')
def save_topic_ratings_bulk(payload: TopicRatingsBulkIn, db: Session = Depends(get_session), user: models.User = Depends(get_user_or_dev_user_in_development)):
    rate_limit.enforce(rate_limit.GENERAL, user.id)
    return services.TopicRatingService(db).save_bulk(user.id, payload.ratings)


@app.get('/api/plan/payments')
def list_payments(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return the caller's payments, newest first."""
    return {'payments': services.PaymentService(db).list_payments(user.id)}


@app.get('/api/plan/blocks')
def list_blocks(status: Optional[str] = None, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return {'blocks': services.BlockService(db).list_blocks(user.id, status)}


@app.post('/api/plan/mark-done')
def mark_done(payload: BlockAction, db: Session = Depends(get_session), user: models.User = Depends(get_user_or_dev_user_in_development)):
    rate_limit.enforce(rate_limit.GENERAL, user.id)
    return services.BlockService(db).apply(user.id, payload.block_id, 'done')


@app.post('/api/plan/mark-missed')
def mark_missed(payload: BlockAction, db: Session = Depends(get_session), user: models.User = Depends(get_user_or_dev_user_in_development)):
    rate_limit.enforce(rate_limit.GENERAL, user.id)
    return services.BlockService(db).apply(user.id, payload.block_id, 'missed')


@app.post('/api/plan/skip')
def skip_block(payload: BlockAction, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    rate_limit.enforce(rate_limit.MEDIUM, user.id)
    return services.BlockService(db).apply(user.id, payload.block_id, 'skip')


@app.post('/api/plan/mark-scheduled')
def mark_scheduled(payload: BlockAction, db: Session = Depends(get_session), user: models.User = Depends(get_user_or_dev_user_in_development)):
    rate_limit.enforce(rate_limit.GENERAL, user.id)
    return services.BlockService(db).apply(user.id, payload.block_id, 'scheduled')


@app.post('/api/refund/request')
def request_refund(payload: RefundRequestIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Refund the given payment if it is still inside the refund window."""
    rate_limit.enforce(rate_limit.DAILY, user.id)
    return services.PaymentService(db).request_refund(user, payload.payment_id)


@app.get('/api/stats')
def stats(db: Session = Depends(get_session), user: models.User = Depends(get_user_or_dev_user_in_development)):
    rate_limit.enforce(rate_limit.STATS, user.id)
    return {'success': True, 'stats': services.StatsService(db).compute(user.id)}


@app.post('/api/support')
def support(payload: SupportIn, request: Request, db: Session = Depends(get_session), user: Optional[models.User] = Depends(get_optional_user)):
    """Store a support message. Anonymous messages are accepted in development only."""
    if user is None and not settings.is_development:
        raise AuthenticationRequired()
    key = user.id if user else (request.client.host if request.client else 'unknown')
    rate_limit.enforce(rate_limit.STRICT, key)
    return services.SupportService(db).submit(user, payload.type, payload.message)


@app.get('/api/dev/status')
def dev_status(request: Request):
    """Tell the client whether to show the dev-tools entry point."""
    return {'is_dev': dev_tools_visible(request.headers.get('host')), 'environment': settings.ENV}


@app.post('/api/dev/set-access')
def dev_set_access(db: Session = Depends(get_session), user: models.User = Depends(dev_user)):
    return services.DevToolsService(db).set_access(user)


@app.post('/api/dev/reset-plan')
def dev_reset_plan(db: Session = Depends(get_session), user: models.User = Depends(dev_user)):
    return services.DevToolsService(db).reset_plan(user)


@app.post('/api/dev/reset-onboarding')
def dev_reset_onboarding(db: Session = Depends(get_session), user: models.User = Depends(dev_user)):
    return services.DevToolsService(db).reset_onboarding(user)


@app.post('/api/dev/full-reset')
def dev_full_reset(db: Session = Depends(get_session), user: models.User = Depends(dev_user)):
    return services.DevToolsService(db).full_reset(user)


@app.post('/api/dev/create-test-payment')
def dev_create_test_payment(db: Session = Depends(get_session), user: models.User = Depends(dev_user)):
    return services.PaymentService(db).create_test_payment(user)


@app.get("/", response_class=HTMLResponse)
def home():
    """Minimal landing page; campaign links point here with utm_* parameters."""
    return """
    <!DOCTYPE html>
    <html>
    <head>
      <meta charset="UTF-8" />
      <title>Revision Planner</title>
      <style>
        body { font-family: Arial, sans-serif; margin: 32px; }
        .card { max-width: 640px; padding: 16px; border: 1px solid #ddd; border-radius: 8px; }
      </style>
    </head>
    <body>
      <div class="card">
        <h1>Revision Planner API</h1>
        <p>A-Level revision planning backend. See <a href="/docs">the API docs</a>.</p>
      </div>
    </body>
    </html>
    """


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
