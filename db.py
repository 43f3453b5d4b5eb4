"""Learner state persistence: the store protocol plus SQLite and in-memory stores."""

import json
import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from db_pool import SQLiteConnectionPool
from engines.bkt import BKTParams
from engines.learner_state import LearnerSkillState
from engines.spaced_repetition import SpacedRepetitionState
from engines.structured_log import log_json
from schemas import coerce_number

DB_PATH = os.getenv("DB_PATH", "data.db")


class LearnerStateStore(Protocol):
    """Persistence contract consumed by ``LearnerStateService`` and the fitter."""

    def get_state(self, learner_id: str, skill_id: str) -> Optional[LearnerSkillState]: ...

    def upsert_state(self, state: LearnerSkillState) -> None: ...

    def list_states(self, learner_id: str, notebook_id: Optional[str] = None) -> List[LearnerSkillState]: ...

    def delete_states(self, learner_id: str, notebook_id: str) -> int: ...

    def get_skill_params(self, skill_id: str) -> Optional[BKTParams]: ...

    def store_skill_params(self, skill_id: str, params: BKTParams, fit=None, notebook_id: Optional[str] = None) -> None: ...

    def list_skill_params(self, notebook_id: Optional[str] = None) -> Dict[str, BKTParams]: ...


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _fit_summary(fit) -> Dict[str, Any]:
    if fit is None:
        return {}
    return {
        "fit_quality": fit.fit_quality,
        "log_likelihood": fit.log_likelihood if fit.log_likelihood != float("-inf") else None,
        "iterations": fit.iterations,
        "converged": bool(fit.converged),
    }


def state_from_row(row: Any) -> LearnerSkillState:
    """Rebuild a state from a stored row; numeric columns pass through ``coerce_number``."""

    return LearnerSkillState(
        learner_id=str(row["learner_id"]),
        skill_id=str(row["skill_id"]),
        notebook_id=row["notebook_id"],
        p_mastery=coerce_number(row["p_mastery"]),
        bkt_params=BKTParams(
            p_l0=coerce_number(row["bkt_p_l0"]),
            p_t=coerce_number(row["bkt_p_t"]),
            p_s=coerce_number(row["bkt_p_s"]),
            p_g=coerce_number(row["bkt_p_g"]),
        ),
        mastery_status=str(row["mastery_status"]),
        mastery_threshold=coerce_number(row["mastery_threshold"]),
        total_attempts=int(coerce_number(row["total_attempts"])),
        correct_attempts=int(coerce_number(row["correct_attempts"])),
        consecutive_successes=int(coerce_number(row["consecutive_successes"])),
        spaced_repetition=SpacedRepetitionState(
            ease_factor=coerce_number(row["sr_ease_factor"]),
            interval=int(coerce_number(row["sr_interval"])),
            next_review_at=_parse_dt(row["sr_next_review_at"]),
            repetitions=int(coerce_number(row["sr_repetitions"])),
        ),
        current_scaffold_level=int(coerce_number(row["current_scaffold_level"])),
        updated_at=_parse_dt(row["updated_at"]),
    )


def state_to_row(state: LearnerSkillState) -> Dict[str, Any]:
    params = state.bkt_params
    sr = state.spaced_repetition
    return {
        "learner_id": state.learner_id,
        "skill_id": state.skill_id,
        "notebook_id": state.notebook_id,
        "p_mastery": state.p_mastery,
        "bkt_p_l0": params.p_l0,
        "bkt_p_t": params.p_t,
        "bkt_p_s": params.p_s,
        "bkt_p_g": params.p_g,
        "mastery_status": state.mastery_status,
        "mastery_threshold": state.mastery_threshold,
        "total_attempts": state.total_attempts,
        "correct_attempts": state.correct_attempts,
        "consecutive_successes": state.consecutive_successes,
        "sr_ease_factor": sr.ease_factor,
        "sr_interval": sr.interval,
        "sr_next_review_at": _iso(sr.next_review_at),
        "sr_repetitions": sr.repetitions,
        "current_scaffold_level": state.current_scaffold_level,
        "updated_at": _iso(state.updated_at),
    }


_STATE_COLUMNS = (
    "learner_id", "skill_id", "notebook_id", "p_mastery",
    "bkt_p_l0", "bkt_p_t", "bkt_p_s", "bkt_p_g",
    "mastery_status", "mastery_threshold",
    "total_attempts", "correct_attempts", "consecutive_successes",
    "sr_ease_factor", "sr_interval", "sr_next_review_at", "sr_repetitions",
    "current_scaffold_level", "updated_at",
)


class SQLiteLearnerStore:
    """SQLite-backed learner state store using a pooled connection per call."""

    def __init__(self, database: Optional[str] = None, max_connections: int = 10):
        self.database = database or DB_PATH
        self._pool = SQLiteConnectionPool(self.database, max_connections=max_connections)
        self.init()

    def close(self) -> None:
        self._pool.close_all()

    def _exec(self, sql: str, params: Iterable = ()):
        with self._pool.get_connection() as con:
            cur = con.execute(sql, tuple(params))
            con.commit()
            return cur

    def _query(self, sql: str, params: Iterable = ()) -> List[sqlite3.Row]:
        with self._pool.get_connection() as con:
            cur = con.execute(sql, tuple(params))
            return cur.fetchall()

    def init(self) -> None:
        """Initialize required tables if they don't exist."""
        self._exec(
            """
            CREATE TABLE IF NOT EXISTS learner_skill_state (
                learner_id TEXT NOT NULL,
                skill_id TEXT NOT NULL,
                notebook_id TEXT,
                p_mastery REAL NOT NULL,
                bkt_p_l0 REAL NOT NULL,
                bkt_p_t REAL NOT NULL,
                bkt_p_s REAL NOT NULL,
                bkt_p_g REAL NOT NULL,
                mastery_status TEXT NOT NULL,
                mastery_threshold REAL NOT NULL,
                total_attempts INTEGER NOT NULL DEFAULT 0,
                correct_attempts INTEGER NOT NULL DEFAULT 0,
                consecutive_successes INTEGER NOT NULL DEFAULT 0,
                sr_ease_factor REAL NOT NULL,
                sr_interval INTEGER NOT NULL DEFAULT 0,
                sr_next_review_at TEXT,
                sr_repetitions INTEGER NOT NULL DEFAULT 0,
                current_scaffold_level INTEGER NOT NULL DEFAULT 1,
                updated_at TEXT,
                PRIMARY KEY (learner_id, skill_id)
            )
            """
        )
        self._exec(
            "CREATE INDEX IF NOT EXISTS idx_lss_notebook ON learner_skill_state(learner_id, notebook_id)"
        )
        self._exec(
            """
            CREATE TABLE IF NOT EXISTS skill_bkt_params (
                skill_id TEXT PRIMARY KEY,
                notebook_id TEXT,
                p_l0 REAL NOT NULL,
                p_t REAL NOT NULL,
                p_s REAL NOT NULL,
                p_g REAL NOT NULL,
                fit_summary TEXT,
                fitted_at TEXT NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    def get_state(self, learner_id: str, skill_id: str) -> Optional[LearnerSkillState]:
        rows = self._query(
            "SELECT * FROM learner_skill_state WHERE learner_id=? AND skill_id=?",
            (learner_id, skill_id),
        )
        return state_from_row(rows[0]) if rows else None

    def upsert_state(self, state: LearnerSkillState) -> None:
        row = state_to_row(state)
        placeholders = ", ".join("?" for _ in _STATE_COLUMNS)
        updates = ", ".join(
            f"{col}=excluded.{col}" for col in _STATE_COLUMNS if col not in {"learner_id", "skill_id"}
        )
        self._exec(
            f"INSERT INTO learner_skill_state ({', '.join(_STATE_COLUMNS)}) VALUES ({placeholders}) "
            f"ON CONFLICT(learner_id, skill_id) DO UPDATE SET {updates}",
            [row[col] for col in _STATE_COLUMNS],
        )

    def list_states(self, learner_id: str, notebook_id: Optional[str] = None) -> List[LearnerSkillState]:
        if notebook_id is None:
            rows = self._query(
                "SELECT * FROM learner_skill_state WHERE learner_id=? ORDER BY skill_id",
                (learner_id,),
            )
        else:
            rows = self._query(
                "SELECT * FROM learner_skill_state WHERE learner_id=? AND notebook_id=? ORDER BY skill_id",
                (learner_id, notebook_id),
            )
        return [state_from_row(row) for row in rows]

    def delete_states(self, learner_id: str, notebook_id: str) -> int:
        cur = self._exec(
            "DELETE FROM learner_skill_state WHERE learner_id=? AND notebook_id=?",
            (learner_id, notebook_id),
        )
        return cur.rowcount

    # ------------------------------------------------------------------
    def get_skill_params(self, skill_id: str) -> Optional[BKTParams]:
        rows = self._query(
            "SELECT p_l0, p_t, p_s, p_g FROM skill_bkt_params WHERE skill_id=?",
            (skill_id,),
        )
        if not rows:
            return None
        row = rows[0]
        return BKTParams(
            p_l0=coerce_number(row["p_l0"]),
            p_t=coerce_number(row["p_t"]),
            p_s=coerce_number(row["p_s"]),
            p_g=coerce_number(row["p_g"]),
        )

    def store_skill_params(self, skill_id: str, params: BKTParams, fit=None, notebook_id: Optional[str] = None) -> None:
        summary = _fit_summary(fit)
        self._exec(
            """
            INSERT INTO skill_bkt_params (skill_id, notebook_id, p_l0, p_t, p_s, p_g, fit_summary, fitted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(skill_id) DO UPDATE SET
                notebook_id=COALESCE(excluded.notebook_id, skill_bkt_params.notebook_id),
                p_l0=excluded.p_l0, p_t=excluded.p_t, p_s=excluded.p_s, p_g=excluded.p_g,
                fit_summary=excluded.fit_summary, fitted_at=excluded.fitted_at
            """,
            (
                skill_id,
                notebook_id,
                params.p_l0,
                params.p_t,
                params.p_s,
                params.p_g,
                json.dumps(summary, sort_keys=True),
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        log_json("skill_params_stored", {"skill_id": skill_id, "params": params.to_dict(), **summary})

    def list_skill_params(self, notebook_id: Optional[str] = None) -> Dict[str, BKTParams]:
        if notebook_id is None:
            rows = self._query("SELECT * FROM skill_bkt_params ORDER BY skill_id")
        else:
            rows = self._query(
                "SELECT * FROM skill_bkt_params WHERE notebook_id=? ORDER BY skill_id",
                (notebook_id,),
            )
        return {
            row["skill_id"]: BKTParams(
                p_l0=coerce_number(row["p_l0"]),
                p_t=coerce_number(row["p_t"]),
                p_s=coerce_number(row["p_s"]),
                p_g=coerce_number(row["p_g"]),
            )
            for row in rows
        }


class InMemoryLearnerStore:
    """Dictionary-backed store for tests and single-process embedding."""

    def __init__(self) -> None:
        self._states: Dict[Tuple[str, str], LearnerSkillState] = {}
        self._params: Dict[str, Tuple[BKTParams, Optional[str], Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get_state(self, learner_id: str, skill_id: str) -> Optional[LearnerSkillState]:
        return self._states.get((learner_id, skill_id))

    def upsert_state(self, state: LearnerSkillState) -> None:
        with self._lock:
            self._states[state.key] = state

    def list_states(self, learner_id: str, notebook_id: Optional[str] = None) -> List[LearnerSkillState]:
        return sorted(
            (
                s for (learner, _), s in self._states.items()
                if learner == learner_id and (notebook_id is None or s.notebook_id == notebook_id)
            ),
            key=lambda s: s.skill_id,
        )

    def delete_states(self, learner_id: str, notebook_id: str) -> int:
        with self._lock:
            doomed = [
                key for key, s in self._states.items()
                if key[0] == learner_id and s.notebook_id == notebook_id
            ]
            for key in doomed:
                del self._states[key]
        return len(doomed)

    def get_skill_params(self, skill_id: str) -> Optional[BKTParams]:
        entry = self._params.get(skill_id)
        return entry[0] if entry else None

    def store_skill_params(self, skill_id: str, params: BKTParams, fit=None, notebook_id: Optional[str] = None) -> None:
        with self._lock:
            self._params[skill_id] = (params, notebook_id, _fit_summary(fit))

    def list_skill_params(self, notebook_id: Optional[str] = None) -> Dict[str, BKTParams]:
        return {
            skill_id: entry[0]
            for skill_id, entry in sorted(self._params.items())
            if notebook_id is None or entry[1] == notebook_id
        }


__all__ = [
    "DB_PATH",
    "LearnerStateStore",
    "SQLiteLearnerStore",
    "InMemoryLearnerStore",
    "state_from_row",
    "state_to_row",
]
