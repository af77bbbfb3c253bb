"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the trivia quiz backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and turn quiz outcomes into JSON responses. Every quiz failure
is returned as `{"success": false, "kind": ..., "message": ...}` with a
status code chosen by its kind.

Endpoints implemented:
- POST /api/auth/register
- POST /api/auth/login
- POST /api/logout
- GET /api/auth/status
- GET /api/quiz/start
- POST /api/quiz/answer
- POST /api/quiz/submit
- GET /api/quiz/results
- POST /api/quiz/reset
- GET /api/user/profile
- GET /api/leaderboard
- GET /health
"""

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
from typing import Optional
import os
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session
from . import services, models  # noqa: F401
from .auth import Caller, get_current_caller, get_optional_caller, get_session_store
from .config import settings
from .errors import Err
from .schemas import AnswerIn, LoginIn, RegisterIn, TokenOut
from .session_store import SessionStore
from .utils.observability import get_event_stats
from .utils.provider import OpenTriviaProvider
from .utils.rate_limit import InMemoryRateLimiter
from .utils.selection import QuestionSelector, clamp_count

app = FastAPI(title="Trivia Quiz API")
logger = logging.getLogger("trivia_quiz.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
_provider = OpenTriviaProvider(settings.TRIVIA_API_URL, timeout_s=settings.TRIVIA_TIMEOUT_SECONDS)
_login_rate_limiter = InMemoryRateLimiter()

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


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
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/api/quiz"):
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


def get_selector() -> QuestionSelector:
    """Selection engine bound to the module-level provider."""
    return QuestionSelector(_provider)


def get_quiz_service(
    db: Session = Depends(get_session),
    sessions: SessionStore = Depends(get_session_store),
    selector: QuestionSelector = Depends(get_selector),
) -> services.QuizService:
    return services.QuizService(db, sessions, selector)


def _error_response(outcome: Err) -> JSONResponse:
    return JSONResponse(status_code=outcome.error.status_code, content=outcome.error.to_dict())


def _enforce_login_rate_limit(request: Request, key: str) -> None:
    allowed, retry_after = _login_rate_limiter.allow(
        key, settings.LOGIN_RATE_LIMIT_PER_MIN, settings.LOGIN_RATE_LIMIT_WINDOW_SECONDS
    )
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"too many login attempts; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )


def _login_key(request: Request, identifier: str) -> str:
    return f"{request.client.host if request.client else 'unknown'}:{identifier.strip().lower()}"


@app.post('/api/auth/register', status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_session), sessions: SessionStore = Depends(get_session_store)):
    """Register a new user.

    Returns 409 when the username or email is already registered.
    """
    auth = services.AuthService(db, sessions)
    try:
        user = auth.register(payload.username, payload.email, payload.password)
    except services.AccountConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {'success': True, 'id': user.id, 'username': user.username, 'email': user.email}


@app.post('/api/auth/login', response_model=TokenOut)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_session), sessions: SessionStore = Depends(get_session_store)):
    """Authenticate a user and return a JWT bound to a new server session.

    The token carries `user_id`, `username` and the session id `sid`.
    """
    key = _login_key(request, payload.identifier)
    _enforce_login_rate_limit(request, key)
    auth = services.AuthService(db, sessions)
    token = auth.authenticate(payload.identifier, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    _login_rate_limiter.clear(key)
    return {'access_token': token}


@app.post('/api/logout')
def logout(caller: Caller = Depends(get_current_caller), db: Session = Depends(get_session), sessions: SessionStore = Depends(get_session_store)):
    """Destroy the caller's server session; the token stops working."""
    services.AuthService(db, sessions).logout(caller.sid)
    return {'success': True}


@app.get('/api/auth/status')
def auth_status(caller: Optional[Caller] = Depends(get_optional_caller)):
    """Report whether the request carries a live session."""
    if caller is None:
        return {'authenticated': False, 'user': None}
    return {
        'authenticated': True,
        'user': {'id': caller.user.id, 'username': caller.user.username, 'email': caller.user.email},
    }


@app.get('/api/quiz/start')
def start_quiz(
    amount: int = 10,
    category: Optional[str] = None,
    caller: Caller = Depends(get_current_caller),
    quiz: services.QuizService = Depends(get_quiz_service),
):
    """Start a new quiz, replacing any quiz in progress.

    `amount` is clamped to 1..10. `category` is an Open Trivia DB
    category id, or empty/`any` for all categories. The response never
    includes correct answers.
    """
    outcome = quiz.start(caller.user.id, amount, category)
    if isinstance(outcome, Err):
        return _error_response(outcome)
    return {
        'success': True,
        'questions': outcome.value,
        'total_questions': len(outcome.value),
        'requested': clamp_count(amount),
    }


@app.post('/api/quiz/answer')
def submit_answer(payload: AnswerIn, caller: Caller = Depends(get_current_caller), quiz: services.QuizService = Depends(get_quiz_service)):
    """Store the answer for one question. Re-answering overwrites."""
    outcome = quiz.answer(caller.user.id, payload.question_index, payload.answer)
    if isinstance(outcome, Err):
        return _error_response(outcome)
    return {'success': True, **outcome.value}


@app.post('/api/quiz/submit')
def submit_quiz(caller: Caller = Depends(get_current_caller), quiz: services.QuizService = Depends(get_quiz_service)):
    """Score the active quiz and record it in the user's history.

    `saved` is False if the attempt could not be written; the score is
    returned either way.
    """
    outcome, saved = quiz.submit(caller.user.id)
    if isinstance(outcome, Err):
        return _error_response(outcome)
    return {'success': True, 'saved': saved, **outcome.value.to_dict()}


@app.get('/api/quiz/results')
def quiz_results(caller: Caller = Depends(get_current_caller), quiz: services.QuizService = Depends(get_quiz_service)):
    """Return the result of the most recently submitted quiz."""
    outcome = quiz.last_result(caller.user.id)
    if isinstance(outcome, Err):
        return _error_response(outcome)
    return {'success': True, **outcome.value.to_dict()}


@app.post('/api/quiz/reset')
def reset_quiz(caller: Caller = Depends(get_current_caller), quiz: services.QuizService = Depends(get_quiz_service)):
    """Clear the active quiz, the last result and the seen-question ledger."""
    quiz.reset(caller.user.id)
    return {'success': True}


@app.get('/api/user/profile')
def profile(caller: Caller = Depends(get_current_caller), db: Session = Depends(get_session)):
    """Account details, best/average score and the full attempt history."""
    return {'success': True, **services.HistoryService(db).profile(caller.user)}


@app.get('/api/leaderboard')
def leaderboard(caller: Caller = Depends(get_current_caller), db: Session = Depends(get_session)):
    """Top 10 users by best score plus the caller's own rank."""
    return {'success': True, **services.LeaderboardService(db).for_user(caller.user)}


@app.get("/health")
def health():
    """Lightweight health check; also reports unsaved attempt count."""
    stats = get_event_stats()
    return {"status": "ok", "persistence_failures": stats.get("persistence_failures", 0)}
