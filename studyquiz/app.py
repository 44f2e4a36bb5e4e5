"""FastAPI application with all routes."""
from __future__ import annotations

import logging
import sqlite3

logging.basicConfig(level=logging.INFO, format="%(name)s | %(message)s")

from fastapi import FastAPI, File, HTTPException, Request, Response, UploadFile
from fastapi.responses import JSONResponse

from studyquiz.auth import (
    MAX_PASSWORD_BYTES,
    SESSION_COOKIE,
    hash_password,
    new_session_token,
    session_expiry,
    verify_password,
)
from studyquiz.config import (
    Settings,
    SettingsError,
    load_settings,
    make_llm,
    save_settings,
    update_settings,
)
from studyquiz.db import Database, FriendRequestError, public_user
from studyquiz.errors import GenerationError, GenerationUpstreamError
from studyquiz.extraction import ExtractionError, UnsupportedFileType, extract_text
from studyquiz.models import ParameterError, validate_parameters
from studyquiz.question_generator import QuestionGenerator

app = FastAPI(title="StudyQuiz")

log = logging.getLogger("studyquiz.api")

# Global state (initialized in startup)
_db: Database | None = None
_settings: Settings | None = None


def get_db() -> Database:
    assert _db is not None
    return _db


def get_settings() -> Settings:
    assert _settings is not None
    return _settings


def _get_llm():
    return make_llm(get_settings())


def _get_generator() -> QuestionGenerator:
    s = get_settings()
    return QuestionGenerator(_get_llm(), temperature=s.temperature, timeout=s.generation_timeout)


@app.on_event("startup")
async def startup():
    global _db, _settings
    if _db is not None:
        return  # Already initialized (e.g. by tests)
    _settings = load_settings()
    _db = Database(_settings.db_full_path)
    purged = _db.purge_expired_sessions()
    if purged:
        log.info("Purged %d expired login sessions", purged)


@app.on_event("shutdown")
async def shutdown():
    if _db:
        _db.close()


# ── Helpers ───────────────────────────────────────────────────────────────

def _optional_user(request: Request) -> dict | None:
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        return None
    return get_db().get_session_user(token)


def _require_user(request: Request) -> dict:
    user = _optional_user(request)
    if user is None:
        raise HTTPException(401, "Not authenticated")
    return user


async def _read_body(request: Request) -> dict:
    """JSON body, or form fields for multipart/urlencoded posts."""
    ctype = request.headers.get("content-type", "")
    if ctype.startswith("multipart/form-data") or ctype.startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        return {k: v for k, v in form.items() if isinstance(v, str)}
    if not await request.body():
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(400, "Request body must be JSON")
    if not isinstance(body, dict):
        raise HTTPException(400, "Request body must be a JSON object")
    return body


def _int_field(body: dict, name: str, minimum: int = 0) -> int:
    value = body.get(name)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise HTTPException(400, f"{name} must be an integer >= {minimum}")
    return value


def _str_field(body: dict, name: str) -> str:
    """Stripped string value; null and non-string values count as missing."""
    value = body.get(name)
    return value.strip() if isinstance(value, str) else ""


def _default_title(content: str) -> str:
    first_line = content.strip().splitlines()[0].strip()
    return first_line if len(first_line) <= 60 else first_line[:57].rstrip() + "..."


def _visible_quiz(quiz_id: int, user: dict | None) -> dict:
    """Quiz the caller may read: their own, an anonymous one, or a shared one."""
    quiz = get_db().get_quiz(quiz_id)
    if quiz is None:
        raise HTTPException(404, "Quiz not found")
    owner = quiz["userId"]
    if owner is None or quiz["isPublic"] or (user is not None and user["id"] == owner):
        return quiz
    raise HTTPException(404, "Quiz not found")


def _start_session(response: Response, user_id: int) -> None:
    s = get_settings()
    token = new_session_token()
    get_db().create_auth_session(token, user_id, session_expiry(s.session_days))
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=s.session_days * 86400,
        httponly=True,
        samesite="lax",
    )


# ── API: Auth ─────────────────────────────────────────────────────────────

@app.post("/api/auth/register")
async def api_register(request: Request, response: Response):
    body = await _read_body(request)
    first = _str_field(body, "firstName")
    last = _str_field(body, "lastName")
    email = _str_field(body, "email")
    password = body.get("password")
    if not isinstance(password, str):
        password = ""
    if not (first and last and email and password):
        raise HTTPException(400, "firstName, lastName, email and password are required")
    if "@" not in email:
        raise HTTPException(400, "Invalid email address")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise HTTPException(400, f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

    db = get_db()
    try:
        user = db.create_user(first, last, email, hash_password(password))
    except sqlite3.IntegrityError:
        raise HTTPException(409, "An account with this email already exists")
    log.info("Registered user %d", user["id"])
    _start_session(response, user["id"])
    return public_user(user)


@app.post("/api/auth/login")
async def api_login(request: Request, response: Response):
    body = await _read_body(request)
    password = body.get("password")
    if not isinstance(password, str):
        password = ""
    user = get_db().get_user_by_email(_str_field(body, "email"))
    if user is None or not verify_password(password, user["password_hash"]):
        raise HTTPException(401, "Invalid email or password")
    _start_session(response, user["id"])
    return {"message": "Logged in successfully", "user": public_user(user)}


@app.post("/api/auth/logout")
async def api_logout(request: Request, response: Response):
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        get_db().delete_auth_session(token)
    response.delete_cookie(SESSION_COOKIE)
    return {"message": "Logged out"}


@app.get("/api/auth/me")
async def api_me(request: Request):
    return public_user(_require_user(request))


# ── API: Content extraction ───────────────────────────────────────────────

@app.post("/api/extract-text")
async def api_extract_text(file: UploadFile = File(...)):
    s = get_settings()
    data = await file.read(s.max_upload_bytes + 1)
    if len(data) > s.max_upload_bytes:
        raise HTTPException(413, f"File size should be less than {s.max_upload_bytes // (1024 * 1024)}MB")

    try:
        text = await extract_text(data, file.content_type, file.filename, llm=_get_llm())
    except UnsupportedFileType as e:
        raise HTTPException(415, str(e))
    except ExtractionError as e:
        raise HTTPException(422, str(e))
    except Exception as e:
        log.warning("Image text extraction failed: %s", e)
        raise HTTPException(502, "Failed to extract text from file")
    return {"text": text}


# ── API: Quizzes ──────────────────────────────────────────────────────────

@app.post("/api/quiz/generate")
async def api_generate_quiz(request: Request):
    body = await _read_body(request)
    user = _optional_user(request)

    content = body.get("content")
    if not isinstance(content, str) or not content.strip():
        return JSONResponse(
            {"error": "Invalid request", "details": "content is required", "field": "content"},
            status_code=422,
        )
    try:
        params = validate_parameters(body)
    except ParameterError as e:
        return JSONResponse(
            {"error": "Invalid request", "details": str(e), "field": e.field},
            status_code=422,
        )

    try:
        generator = _get_generator()
    except ValueError as e:
        log.error("LLM provider is not usable: %s", e)
        return JSONResponse({"error": "Failed to generate quiz", "details": str(e)}, status_code=503)
    try:
        questions = await generator.generate(content, params)
    except GenerationUpstreamError as e:
        log.warning("Quiz generation upstream failure: %s", e)
        return JSONResponse({"error": "Failed to generate quiz", "details": str(e)}, status_code=502)
    except GenerationError as e:
        log.warning("Quiz generation rejected model output: %s", e)
        return JSONResponse({"error": "Failed to generate quiz", "details": str(e)}, status_code=422)

    title = _str_field(body, "title") or _default_title(content)
    quiz = get_db().save_quiz(
        user["id"] if user else None,
        title,
        content,
        params,
        questions,
        llm_provider=generator.llm.name(),
    )
    return quiz


@app.get("/api/quizzes")
async def api_my_quizzes(request: Request):
    user = _require_user(request)
    return get_db().get_user_quizzes(user["id"])


@app.get("/api/quiz/{quiz_id}")
async def api_get_quiz(quiz_id: int, request: Request):
    return _visible_quiz(quiz_id, _optional_user(request))


@app.post("/api/quiz/attempt")
async def api_quiz_attempt(request: Request):
    body = await _read_body(request)
    user = _optional_user(request)
    quiz = _visible_quiz(_int_field(body, "quizId", minimum=1), user)

    answers = body.get("answers")
    if not isinstance(answers, list):
        raise HTTPException(400, "answers must be a list")

    questions = quiz["questions"]
    score = sum(
        1 for q, a in zip(questions, answers)
        if isinstance(a, str) and a == q["correctAnswer"]
    )
    attempt = get_db().record_attempt(
        user["id"] if user else None, quiz["id"], score, len(questions), answers
    )
    return attempt


@app.post("/api/quiz/share")
async def api_share_quiz(request: Request):
    user = _require_user(request)
    body = await _read_body(request)
    quiz_id = _int_field(body, "quizId", minimum=1)
    db = get_db()
    quiz = db.get_quiz(quiz_id)
    if quiz is None or quiz["userId"] != user["id"]:
        raise HTTPException(404, "Quiz not found")
    code = db.share_quiz(quiz_id)
    return {"quizId": quiz_id, "shareCode": code, "isPublic": True}


@app.get("/api/quiz/shared/{share_code}")
async def api_shared_quiz(share_code: str):
    quiz = get_db().get_quiz_by_share_code(share_code)
    if quiz is None:
        raise HTTPException(404, "Quiz not found")
    return quiz


# ── API: Leaderboard ──────────────────────────────────────────────────────

@app.get("/api/quiz/{quiz_id}/leaderboard")
async def api_get_leaderboard(quiz_id: int, request: Request):
    _visible_quiz(quiz_id, _optional_user(request))
    return get_db().get_leaderboard(quiz_id)


@app.post("/api/quiz/{quiz_id}/leaderboard")
async def api_post_leaderboard(quiz_id: int, request: Request):
    user = _require_user(request)
    quiz = _visible_quiz(quiz_id, user)
    body = await _read_body(request)
    score = _int_field(body, "score")
    time_taken = _int_field(body, "timeTaken")
    if score > len(quiz["questions"]):
        raise HTTPException(400, "score cannot exceed the number of questions")
    entry_id = get_db().add_leaderboard_entry(user["id"], quiz_id, score, time_taken)
    return {"id": entry_id, "quizId": quiz_id, "score": score, "timeTaken": time_taken}


# ── API: Friends ──────────────────────────────────────────────────────────

@app.get("/api/friends")
async def api_friends(request: Request):
    user = _require_user(request)
    return get_db().get_friends(user["id"])


@app.get("/api/friends/requests")
async def api_friend_requests(request: Request):
    user = _require_user(request)
    return get_db().get_friend_requests(user["id"])


@app.post("/api/friends/request")
async def api_send_friend_request(request: Request):
    user = _require_user(request)
    body = await _read_body(request)
    email = _str_field(body, "friendEmail")
    if not email:
        raise HTTPException(400, "friendEmail is required")
    db = get_db()
    friend = db.get_user_by_email(email)
    if friend is None:
        raise HTTPException(404, "User not found")
    try:
        return db.send_friend_request(user["id"], friend["id"])
    except FriendRequestError as e:
        raise HTTPException(400, str(e))


@app.post("/api/friends/respond")
async def api_respond_friend_request(request: Request):
    user = _require_user(request)
    body = await _read_body(request)
    request_id = _int_field(body, "requestId", minimum=1)
    accept = body.get("accept")
    if not isinstance(accept, bool):
        raise HTTPException(400, "accept must be true or false")
    result = get_db().respond_to_friend_request(request_id, user["id"], accept)
    if result is None:
        raise HTTPException(404, "Friend request not found")
    return result


# ── API: Analytics ────────────────────────────────────────────────────────

@app.get("/api/analytics/quiz-stats")
async def api_quiz_stats(request: Request):
    _require_user(request)
    db = get_db()
    return {
        "completionRate": db.get_completion_rate(),
        "difficultyDistribution": db.get_difficulty_distribution(),
    }


@app.get("/api/analytics/user-engagement")
async def api_user_engagement(request: Request):
    _require_user(request)
    return {"daily": get_db().get_daily_engagement()}


@app.get("/api/analytics/performance-trends")
async def api_performance_trends(request: Request):
    _require_user(request)
    return {"weekly": get_db().get_weekly_performance()}


@app.get("/api/stats")
async def api_stats():
    return get_db().get_stats()


# ── API: Settings ─────────────────────────────────────────────────────────

def _require_admin(request: Request) -> dict:
    user = _require_user(request)
    if not get_settings().is_admin(user["email"]):
        raise HTTPException(403, "Admin access required")
    return user


@app.get("/api/settings")
async def api_get_settings(request: Request):
    _require_admin(request)
    return get_settings().to_dict()


@app.put("/api/settings")
async def api_update_settings(request: Request):
    global _settings
    user = _require_admin(request)
    body = await _read_body(request)
    try:
        updated = update_settings(get_settings(), body)
    except SettingsError as e:
        raise HTTPException(400, str(e))
    save_settings(updated)
    _settings = updated
    log.info("Settings updated by user %d", user["id"])
    return updated.to_dict()
