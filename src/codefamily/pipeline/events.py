"""Queue events, decoded once at the queue boundary into a closed union.

Payloads follow the hosting platform's webhook bodies; only the fields the
pipeline consumes are read.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional, Union


@dataclass(frozen=True)
class PushedCommit:
    sha: str
    message: str = ""
    added: tuple[str, ...] = ()
    modified: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()

    @property
    def touched(self) -> set[str]:
        return set(self.added) | set(self.modified)


@dataclass(frozen=True)
class PushEvent:
    owner: str
    name: str
    ref: str
    after: str
    pusher: str
    clone_url: Optional[str] = None
    commits: tuple[PushedCommit, ...] = ()

    @property
    def branch(self) -> str:
        return self.ref[len("refs/heads/"):] if self.ref.startswith("refs/heads/") else self.ref

    @property
    def changed_files(self) -> set[str]:
        """Paths added or modified by any pushed commit and still present afterwards."""
        touched: set[str] = set()
        for commit in self.commits:
            touched |= commit.touched
            touched -= set(commit.removed)
        return touched


@dataclass(frozen=True)
class ReviewRequestEvent:
    owner: str
    name: str
    action: str
    number: int
    title: str
    state: str
    author: str
    head_sha: Optional[str] = None


@dataclass(frozen=True)
class UnsupportedEvent:
    event_type: str


QueueEvent = Union[PushEvent, ReviewRequestEvent, UnsupportedEvent]

PUSH = "push"
REVIEW_REQUEST = "pull_request"


def decode_event(event_type: str, payload: str) -> QueueEvent:
    """Decode a stored payload.

    Raises:
        ValueError: if the payload is not JSON or lacks required fields.
    """
    if event_type not in (PUSH, REVIEW_REQUEST):
        return UnsupportedEvent(event_type)
    try:
        body = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ValueError(f"payload is not valid JSON: {e}") from e
    if not isinstance(body, dict):
        raise ValueError("payload must be a JSON object")

    try:
        if event_type == PUSH:
            return _decode_push(body)
        return _decode_review_request(body)
    except (KeyError, TypeError) as e:
        raise ValueError(f"malformed {event_type} payload: missing {e}") from e


def _repository(body: dict[str, Any]) -> tuple[str, str, Optional[str]]:
    repo = body["repository"]
    owner = repo.get("owner") or {}
    owner_name = owner.get("login") or owner.get("name")
    name = repo.get("name")
    if (not owner_name or not name) and repo.get("full_name"):
        owner_name, _, name = repo["full_name"].partition("/")
    if not owner_name or not name:
        raise KeyError("repository owner/name")
    return owner_name, name, repo.get("clone_url")


def _decode_push(body: dict[str, Any]) -> PushEvent:
    owner, name, clone_url = _repository(body)
    pusher = (body.get("sender") or {}).get("login") or (body.get("pusher") or {}).get("name") or ""
    commits = tuple(
        PushedCommit(
            sha=c["id"],
            message=c.get("message", ""),
            added=tuple(c.get("added") or ()),
            modified=tuple(c.get("modified") or ()),
            removed=tuple(c.get("removed") or ()),
        )
        for c in body.get("commits") or ()
    )
    return PushEvent(
        owner=owner,
        name=name,
        ref=body["ref"],
        after=body["after"],
        pusher=pusher,
        clone_url=clone_url,
        commits=commits,
    )


def _decode_review_request(body: dict[str, Any]) -> ReviewRequestEvent:
    owner, name, _ = _repository(body)
    pr = body["pull_request"]
    state = pr.get("state") or "open"
    return ReviewRequestEvent(
        owner=owner,
        name=name,
        action=body.get("action", ""),
        number=int(pr.get("number") or body["number"]),
        title=pr.get("title") or "",
        state=state,
        author=(pr.get("user") or {}).get("login") or "",
        head_sha=(pr.get("head") or {}).get("sha"),
    )
