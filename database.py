"""
Journal storage for Dream Analyzer.
Dreams and profiles live in the hosted store (Supabase PostgREST). Every call
runs with the signed-in user's token, so the store's row-level policies apply
on top of the user filters added here.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import requests

import config
from auth import AuthSession, supabase_headers
from encryption import decrypt_field, encrypt_field

log = logging.getLogger(__name__)

DREAMS_TABLE = "dreams"
PROFILES_TABLE = "profiles"


class StoreError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class DreamRecord:
    id: str
    created_at: str
    user_id: str
    dream_content: str
    emotions: List[str] = field(default_factory=list)
    analysis: Optional[str] = None


@dataclass
class Profile:
    id: str
    created_at: str
    email: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


@dataclass
class SaveOutcome:
    """Result of a best-effort save: a record, or the error that stopped it."""

    record: Optional[DreamRecord] = None
    error: Optional[StoreError] = None

    @property
    def saved(self) -> bool:
        return self.record is not None


def _table_url(table: str) -> str:
    return f"{config.SUPABASE_URL}/rest/v1/{table}"


def _request(
    method: str,
    table: str,
    session: AuthSession,
    params: Optional[Dict[str, str]] = None,
    body: Optional[Dict[str, Any]] = None,
    prefer: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Issue one PostgREST call and return the rows in its response."""
    headers = supabase_headers(session.access_token)
    if prefer:
        headers["Prefer"] = prefer

    try:
        resp = requests.request(
            method,
            _table_url(table),
            headers=headers,
            params=params,
            json=body,
            timeout=config.SUPABASE_TIMEOUT,
        )
    except requests.RequestException as exc:
        raise StoreError(f"Store unreachable: {exc}") from exc

    if resp.status_code >= 400:
        try:
            message = resp.json().get("message") or resp.text[:200]
        except ValueError:
            message = resp.text[:200]
        raise StoreError(
            f"{method} {table} failed ({resp.status_code}): {message}",
            status_code=resp.status_code,
        )

    if resp.status_code == 204 or not resp.content:
        return []
    return resp.json()


def _row_to_dream(row: Dict[str, Any]) -> DreamRecord:
    return DreamRecord(
        id=str(row["id"]),
        created_at=row.get("created_at", ""),
        user_id=row.get("user_id", ""),
        dream_content=decrypt_field(row.get("dream_content", "")),
        emotions=list(row.get("emotions") or []),
        analysis=row.get("analysis"),
    )


def _row_to_profile(row: Dict[str, Any]) -> Profile:
    return Profile(
        id=row["id"],
        created_at=row.get("created_at", ""),
        email=row.get("email", ""),
        display_name=row.get("display_name"),
        avatar_url=row.get("avatar_url"),
    )


# ----------------------------------------------------
# Dream Management
# ----------------------------------------------------

def create_dream(
    session: AuthSession,
    dream_content: str,
    emotions: Sequence[str],
    analysis: Optional[str],
) -> DreamRecord:
    """Insert a dream for the signed-in user. The store assigns id and created_at.

    Dream text is encrypted at rest; emotions and analysis are stored as-is.
    """
    rows = _request(
        "POST",
        DREAMS_TABLE,
        session,
        body={
            "user_id": session.user_id,
            "dream_content": encrypt_field(dream_content),
            "emotions": list(emotions),
            "analysis": analysis,
        },
        prefer="return=representation",
    )
    if not rows:
        raise StoreError("Insert returned no row")
    return _row_to_dream(rows[0])


def list_dreams(session: AuthSession) -> List[DreamRecord]:
    """All dreams owned by the signed-in user, newest first."""
    rows = _request(
        "GET",
        DREAMS_TABLE,
        session,
        params={
            "select": "*",
            "user_id": f"eq.{session.user_id}",
            "order": "created_at.desc",
        },
    )
    return [_row_to_dream(row) for row in rows]


def delete_dream(session: AuthSession, dream_id: str) -> bool:
    """Delete one dream. Returns False if no row owned by this user matched."""
    rows = _request(
        "DELETE",
        DREAMS_TABLE,
        session,
        params={
            "id": f"eq.{dream_id}",
            "user_id": f"eq.{session.user_id}",
        },
        prefer="return=representation",
    )
    return len(rows) > 0


def save_analysis(
    session: AuthSession,
    dream_content: str,
    emotions: Sequence[str],
    analysis: str,
    logger: Optional[logging.Logger] = None,
) -> SaveOutcome:
    """
    Best-effort journal save after a successful analysis.

    A storage failure must never get in the way of showing the analysis, so
    StoreError is logged and returned in the outcome instead of raised.
    """
    logger = logger or log
    try:
        record = create_dream(session, dream_content, emotions, analysis)
    except StoreError as exc:
        logger.warning("Dream not saved for user %s: %s", session.user_id, exc)
        return SaveOutcome(error=exc)

    logger.info("Saved dream %s for user %s", record.id, session.user_id)
    return SaveOutcome(record=record)


# ----------------------------------------------------
# Profiles
# ----------------------------------------------------

def upsert_profile(session: AuthSession) -> Profile:
    """Create the user's profile row, or refresh its email if it exists."""
    rows = _request(
        "POST",
        PROFILES_TABLE,
        session,
        body={"id": session.user_id, "email": session.email},
        prefer="resolution=merge-duplicates,return=representation",
    )
    if not rows:
        raise StoreError("Profile upsert returned no row")
    return _row_to_profile(rows[0])


def get_profile(session: AuthSession) -> Optional[Profile]:
    rows = _request(
        "GET",
        PROFILES_TABLE,
        session,
        params={"select": "*", "id": f"eq.{session.user_id}"},
    )
    return _row_to_profile(rows[0]) if rows else None
