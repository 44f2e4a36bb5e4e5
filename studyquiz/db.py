from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from studyquiz.auth import new_share_code
from studyquiz.models import GeneratedQuestion, GenerationParameters

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS auth_sessions (
    token TEXT PRIMARY KEY,
    user_id INTEGER NOT NULL REFERENCES users(id),
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS quizzes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER REFERENCES users(id),
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    question_type TEXT NOT NULL,
    difficulty TEXT NOT NULL,
    level TEXT NOT NULL,
    questions_json TEXT NOT NULL,
    is_public INTEGER DEFAULT 0,
    share_code TEXT UNIQUE,
    llm_provider TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS attempts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER REFERENCES users(id),
    quiz_id INTEGER NOT NULL REFERENCES quizzes(id),
    score INTEGER NOT NULL,
    total INTEGER NOT NULL,
    answers_json TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS leaderboard (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    quiz_id INTEGER NOT NULL REFERENCES quizzes(id),
    score INTEGER NOT NULL,
    time_taken INTEGER NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS friends (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    friend_id INTEGER NOT NULL REFERENCES users(id),
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def public_user(row: dict) -> dict:
    """User record as returned by the API (no password hash)."""
    return {
        "id": row["id"],
        "firstName": row["first_name"],
        "lastName": row["last_name"],
        "email": row["email"],
        "createdAt": row["created_at"],
    }


class FriendRequestError(ValueError):
    pass


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # ── Users ─────────────────────────────────────────────────────────────

    def create_user(self, first_name: str, last_name: str, email: str, password_hash: str | None) -> dict:
        """Insert a user. Raises sqlite3.IntegrityError if the email is taken."""
        cur = self.conn.execute(
            "INSERT INTO users (first_name, last_name, email, password_hash, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (first_name, last_name, email.strip().lower(), password_hash, _now()),
        )
        self.conn.commit()
        return self.get_user(cur.lastrowid)

    def get_user(self, user_id: int) -> dict | None:
        row = self.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None

    def get_user_by_email(self, email: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM users WHERE email = ?", (email.strip().lower(),)
        ).fetchone()
        return dict(row) if row else None

    def get_user_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]

    # ── Auth sessions ─────────────────────────────────────────────────────

    def create_auth_session(self, token: str, user_id: int, expires_at: str) -> None:
        self.conn.execute(
            "INSERT INTO auth_sessions (token, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
            (token, user_id, _now(), expires_at),
        )
        self.conn.commit()

    def get_session_user(self, token: str) -> dict | None:
        """User owning an unexpired session token, or None."""
        row = self.conn.execute(
            "SELECT u.* FROM auth_sessions s JOIN users u ON u.id = s.user_id "
            "WHERE s.token = ? AND s.expires_at > ?",
            (token, _now()),
        ).fetchone()
        return dict(row) if row else None

    def delete_auth_session(self, token: str) -> None:
        self.conn.execute("DELETE FROM auth_sessions WHERE token = ?", (token,))
        self.conn.commit()

    def purge_expired_sessions(self) -> int:
        cur = self.conn.execute("DELETE FROM auth_sessions WHERE expires_at <= ?", (_now(),))
        self.conn.commit()
        return cur.rowcount

    # ── Quizzes ───────────────────────────────────────────────────────────

    def save_quiz(
        self,
        user_id: int | None,
        title: str,
        content: str,
        params: GenerationParameters,
        questions: list[GeneratedQuestion],
        llm_provider: str = "",
    ) -> dict:
        cur = self.conn.execute(
            "INSERT INTO quizzes "
            "(user_id, title, content, question_type, difficulty, level, questions_json, "
            "llm_provider, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                user_id,
                title,
                content,
                params.question_type,
                params.difficulty,
                params.academic_level,
                json.dumps([q.to_dict() for q in questions]),
                llm_provider,
                _now(),
            ),
        )
        self.conn.commit()
        return self.get_quiz(cur.lastrowid)

    def get_quiz(self, quiz_id: int) -> dict | None:
        row = self.conn.execute("SELECT * FROM quizzes WHERE id = ?", (quiz_id,)).fetchone()
        return _quiz_dict(row) if row else None

    def get_user_quizzes(self, user_id: int) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM quizzes WHERE user_id = ? ORDER BY id DESC", (user_id,)
        ).fetchall()
        return [_quiz_dict(r) for r in rows]

    def share_quiz(self, quiz_id: int) -> str:
        """Make a quiz public and return its share code (reused if already shared)."""
        row = self.conn.execute(
            "SELECT share_code FROM quizzes WHERE id = ?", (quiz_id,)
        ).fetchone()
        if row is None:
            raise KeyError(quiz_id)
        if row["share_code"]:
            code = row["share_code"]
        else:
            code = new_share_code()
            while self.conn.execute(
                "SELECT 1 FROM quizzes WHERE share_code = ?", (code,)
            ).fetchone():
                code = new_share_code()
        self.conn.execute(
            "UPDATE quizzes SET is_public = 1, share_code = ? WHERE id = ?", (code, quiz_id)
        )
        self.conn.commit()
        return code

    def get_quiz_by_share_code(self, code: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM quizzes WHERE share_code = ? AND is_public = 1", (code.upper(),)
        ).fetchone()
        return _quiz_dict(row) if row else None

    def get_quiz_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM quizzes").fetchone()[0]

    # ── Attempts ──────────────────────────────────────────────────────────

    def record_attempt(self, user_id: int | None, quiz_id: int, score: int, total: int, answers: list) -> dict:
        cur = self.conn.execute(
            "INSERT INTO attempts (user_id, quiz_id, score, total, answers_json, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (user_id, quiz_id, score, total, json.dumps(answers), _now()),
        )
        self.conn.commit()
        row = self.conn.execute("SELECT * FROM attempts WHERE id = ?", (cur.lastrowid,)).fetchone()
        d = dict(row)
        d["answers"] = json.loads(d.pop("answers_json"))
        return d

    # ── Leaderboard ───────────────────────────────────────────────────────

    def add_leaderboard_entry(self, user_id: int, quiz_id: int, score: int, time_taken: int) -> int:
        cur = self.conn.execute(
            "INSERT INTO leaderboard (user_id, quiz_id, score, time_taken, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (user_id, quiz_id, score, time_taken, _now()),
        )
        self.conn.commit()
        return cur.lastrowid

    def get_leaderboard(self, quiz_id: int, limit: int = 20) -> list[dict]:
        """Best scores first; ties go to the faster run."""
        rows = self.conn.execute(
            "SELECT l.*, u.first_name, u.last_name FROM leaderboard l "
            "JOIN users u ON u.id = l.user_id "
            "WHERE l.quiz_id = ? ORDER BY l.score DESC, l.time_taken ASC, l.id ASC LIMIT ?",
            (quiz_id, limit),
        ).fetchall()
        return [
            {
                "id": r["id"],
                "score": r["score"],
                "timeTaken": r["time_taken"],
                "createdAt": r["created_at"],
                "user": {"id": r["user_id"], "firstName": r["first_name"], "lastName": r["last_name"]},
            }
            for r in rows
        ]

    # ── Friends ───────────────────────────────────────────────────────────

    def send_friend_request(self, user_id: int, friend_id: int) -> dict:
        if user_id == friend_id:
            raise FriendRequestError("You cannot add yourself as a friend")
        existing = self.conn.execute(
            "SELECT * FROM friends WHERE status != 'rejected' AND "
            "((user_id = ? AND friend_id = ?) OR (user_id = ? AND friend_id = ?))",
            (user_id, friend_id, friend_id, user_id),
        ).fetchone()
        if existing:
            if existing["status"] == "accepted":
                raise FriendRequestError("You are already friends")
            raise FriendRequestError("A friend request is already pending")
        cur = self.conn.execute(
            "INSERT INTO friends (user_id, friend_id, status, created_at) VALUES (?, ?, 'pending', ?)",
            (user_id, friend_id, _now()),
        )
        self.conn.commit()
        return dict(self.conn.execute("SELECT * FROM friends WHERE id = ?", (cur.lastrowid,)).fetchone())

    def get_friend_requests(self, user_id: int) -> list[dict]:
        """Pending requests addressed to *user_id*, with the sender's details."""
        rows = self.conn.execute(
            "SELECT f.*, u.id AS other_id, u.first_name, u.last_name, u.email FROM friends f "
            "JOIN users u ON u.id = f.user_id "
            "WHERE f.friend_id = ? AND f.status = 'pending' ORDER BY f.id",
            (user_id,),
        ).fetchall()
        return [_friend_dict(r) for r in rows]

    def respond_to_friend_request(self, request_id: int, user_id: int, accept: bool) -> dict | None:
        """Accept or reject a pending request. Only the addressee may respond."""
        row = self.conn.execute(
            "SELECT * FROM friends WHERE id = ? AND friend_id = ? AND status = 'pending'",
            (request_id, user_id),
        ).fetchone()
        if row is None:
            return None
        status = "accepted" if accept else "rejected"
        self.conn.execute("UPDATE friends SET status = ? WHERE id = ?", (status, request_id))
        self.conn.commit()
        d = dict(row)
        d["status"] = status
        return d

    def get_friends(self, user_id: int) -> list[dict]:
        """Accepted friendships in either direction, with the other user's details."""
        rows = self.conn.execute(
            "SELECT f.*, u.id AS other_id, u.first_name, u.last_name, u.email FROM friends f "
            "JOIN users u ON u.id = CASE WHEN f.user_id = ? THEN f.friend_id ELSE f.user_id END "
            "WHERE f.status = 'accepted' AND (f.user_id = ? OR f.friend_id = ?) "
            "ORDER BY u.first_name, u.last_name",
            (user_id, user_id, user_id),
        ).fetchall()
        return [_friend_dict(r) for r in rows]

    # ── Analytics ─────────────────────────────────────────────────────────

    def get_completion_rate(self) -> list[dict]:
        rows = self.conn.execute(
            "SELECT date(created_at) AS date, "
            "SUM(CASE WHEN score > 0 THEN 1 ELSE 0 END) AS completed, "
            "COUNT(*) AS attempted "
            "FROM attempts GROUP BY date(created_at) ORDER BY date(created_at)"
        ).fetchall()
        return [dict(r) for r in rows]

    def get_difficulty_distribution(self) -> list[dict]:
        rows = self.conn.execute(
            "SELECT difficulty AS name, COUNT(*) AS value FROM quizzes "
            "GROUP BY difficulty ORDER BY difficulty"
        ).fetchall()
        return [dict(r) for r in rows]

    def get_daily_engagement(self) -> list[dict]:
        rows = self.conn.execute(
            "SELECT date(a.created_at) AS date, "
            "COUNT(DISTINCT a.user_id) AS activeUsers, "
            "COUNT(DISTINCT q.id) AS newQuizzes "
            "FROM attempts a LEFT JOIN quizzes q ON a.quiz_id = q.id "
            "GROUP BY date(a.created_at) ORDER BY date(a.created_at)"
        ).fetchall()
        return [dict(r) for r in rows]

    def get_weekly_performance(self) -> list[dict]:
        # Weeks start on Monday: next Sunday (or same day) minus six days.
        rows = self.conn.execute(
            "SELECT date(created_at, 'weekday 0', '-6 days') AS week, "
            "AVG(score) AS avgScore, AVG(time_taken) AS avgTime "
            "FROM leaderboard GROUP BY week ORDER BY week"
        ).fetchall()
        return [
            {"week": r["week"], "avgScore": round(r["avgScore"], 2), "avgTime": round(r["avgTime"], 2)}
            for r in rows
        ]

    def get_stats(self) -> dict:
        attempts = self.conn.execute(
            "SELECT COUNT(*) AS cnt, COALESCE(SUM(score),0) AS correct, "
            "COALESCE(SUM(total),0) AS total FROM attempts"
        ).fetchone()
        shared = self.conn.execute(
            "SELECT COUNT(*) FROM quizzes WHERE is_public = 1"
        ).fetchone()[0]
        questions = self.conn.execute(
            "SELECT COALESCE(SUM(json_array_length(questions_json)),0) FROM quizzes"
        ).fetchone()[0]

        return {
            "total_users": self.get_user_count(),
            "total_quizzes": self.get_quiz_count(),
            "shared_quizzes": shared,
            "total_questions": questions,
            "total_attempts": attempts["cnt"],
            "accuracy": (
                round(attempts["correct"] / attempts["total"] * 100, 1)
                if attempts["total"] > 0
                else 0
            ),
        }


def _quiz_dict(row: sqlite3.Row) -> dict:
    d = dict(row)
    return {
        "id": d["id"],
        "userId": d["user_id"],
        "title": d["title"],
        "content": d["content"],
        "type": d["question_type"],
        "difficulty": d["difficulty"],
        "level": d["level"],
        "questions": json.loads(d["questions_json"]),
        "isPublic": bool(d["is_public"]),
        "shareCode": d["share_code"],
        "llmProvider": d["llm_provider"],
        "createdAt": d["created_at"],
    }


def _friend_dict(row: sqlite3.Row) -> dict:
    return {
        "id": row["id"],
        "userId": row["user_id"],
        "friendId": row["friend_id"],
        "status": row["status"],
        "user": {
            "id": row["other_id"],
            "firstName": row["first_name"],
            "lastName": row["last_name"],
            "email": row["email"],
        },
    }
