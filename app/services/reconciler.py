"""Reconciliation of remote issue records into local issue rows"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import Issue
from app.models.base import utcnow
from app.models.issue import IssuePriority, IssueStatus
from app.services.exceptions import ReconciliationError

logger = logging.getLogger(__name__)

# Statuses a person may set locally that sync must never revert.
MANUAL_TERMINAL_STATUSES = frozenset({IssueStatus.COMPLETED, IssueStatus.CANCELLED})


def _normalize_utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to UTC tz-naive (safe for DB comparisons)."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


class RemoteIssue(BaseModel):
    """One remote issue, flattened from a GraphQL issue node"""

    id: int
    number: int
    title: str
    body: Optional[str] = None
    state: str
    assignee: Optional[str] = None
    pull_request_id: Optional[int] = None
    pull_request_number: Optional[int] = None
    pull_request_state: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @staticmethod
    def _first_node(node: Dict[str, Any], key: str, ref: Any) -> Optional[Dict[str, Any]]:
        """First object of a ``{nodes: [...]}`` connection; any other shape is malformed."""
        connection = node.get(key)
        if connection is None:
            return None
        if not isinstance(connection, dict):
            raise ReconciliationError(f"Malformed issue record #{ref}: invalid {key}")
        nodes = connection.get("nodes")
        if nodes is None:
            return None
        if not isinstance(nodes, list) or not all(n is None or isinstance(n, dict) for n in nodes):
            raise ReconciliationError(f"Malformed issue record #{ref}: invalid {key}")
        nodes = [n for n in nodes if n]
        return nodes[0] if nodes else None

    @classmethod
    def from_node(cls, node: Any) -> "RemoteIssue":
        """Build from a raw node; malformed nodes raise ReconciliationError."""
        if not isinstance(node, dict):
            raise ReconciliationError(f"Malformed issue record: expected an object, got {type(node).__name__}")

        ref = node.get("number") or node.get("databaseId") or "?"
        assignee = cls._first_node(node, "assignees", ref)
        pull_request = cls._first_node(node, "closedByPullRequestsReferences", ref)
        try:
            return cls(
                id=node.get("databaseId"),
                number=node.get("number"),
                title=node.get("title"),
                body=node.get("body"),
                state=node.get("state"),
                assignee=(assignee or {}).get("login"),
                pull_request_id=(pull_request or {}).get("databaseId"),
                pull_request_number=(pull_request or {}).get("number"),
                pull_request_state=(pull_request or {}).get("state"),
                created_at=node.get("createdAt"),
                updated_at=node.get("updatedAt"),
                closed_at=node.get("closedAt"),
            )
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise ReconciliationError(f"Malformed issue record #{ref}: invalid {fields}") from e

    def content_hash(self) -> str:
        """Hash of the remote-sourced content (change detection)."""
        data = {
            "number": self.number,
            "title": self.title,
            "body": self.body or "",
            "state": self.state,
            "pull_request_id": self.pull_request_id,
            "pull_request_number": self.pull_request_number,
            "pull_request_state": self.pull_request_state,
        }
        return hashlib.sha256(json.dumps(data, sort_keys=True).encode()).hexdigest()


def map_remote_status(remote: RemoteIssue) -> IssueStatus:
    """Local status implied by the remote state.

    OPEN -> open; CLOSED -> completed, or review while its linked pull request
    is still open. Any other remote state is rejected rather than guessed.
    """
    state = (remote.state or "").upper()
    if state == "OPEN":
        return IssueStatus.OPEN
    if state == "CLOSED":
        if (remote.pull_request_state or "").upper() == "OPEN":
            return IssueStatus.REVIEW
        return IssueStatus.COMPLETED
    raise ReconciliationError(f"Issue #{remote.number}: unrecognized remote state '{remote.state}'")


@dataclass
class ReconcileResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: List[str] = field(default_factory=list)


class IssueReconciler:
    """Insert-or-update of remote issues, non-destructive toward local data.

    Sync owns title, original description, issue number, linked pull request
    and (mostly) status. Assignee, priority and the expanded description are
    written on insert at most and never overwritten afterwards.
    """

    def __init__(self, db: Session, created_by: str):
        self.db = db
        self.created_by = created_by

    def reconcile(self, repository_id: int, project_id: int, records: Iterable[Any]) -> ReconcileResult:
        result = ReconcileResult()
        for raw in records:
            try:
                outcome = self._reconcile_one(repository_id, project_id, raw)
            except ReconciliationError as e:
                logger.warning(f"Skipping issue record in repository {repository_id}: {e}")
                result.errors.append(str(e))
                continue
            except SQLAlchemyError as e:
                self.db.rollback()
                ref = raw.get("number") if isinstance(raw, dict) else None
                logger.error(f"Failed to store issue #{ref} for repository {repository_id}: {e}")
                result.errors.append(f"Issue #{ref}: storage error: {e.__class__.__name__}")
                continue
            except Exception as e:
                # A failing record is skipped; records already stored keep their counts.
                self.db.rollback()
                ref = raw.get("number") if isinstance(raw, dict) else None
                logger.exception(f"Unexpected error reconciling issue #{ref} for repository {repository_id}: {e}")
                result.errors.append(f"Issue #{ref}: unexpected error: {e.__class__.__name__}: {e}")
                continue

            if outcome == "created":
                result.created += 1
            elif outcome == "updated":
                result.updated += 1
            else:
                result.unchanged += 1
        return result

    def _find_existing(self, repository_id: int, github_issue_id: int) -> Optional[Issue]:
        return (
            self.db.query(Issue)
            .filter(Issue.repository_id == repository_id, Issue.github_issue_id == github_issue_id)
            .first()
        )

    def _reconcile_one(self, repository_id: int, project_id: int, raw: Any) -> str:
        remote = RemoteIssue.from_node(raw)
        remote_status = map_remote_status(remote)
        sync_hash = remote.content_hash()

        existing = self._find_existing(repository_id, remote.id)
        if existing is None:
            self._create(repository_id, project_id, remote, remote_status, sync_hash)
            return "created"

        if existing.sync_hash == sync_hash:
            return "unchanged"

        self._update(existing, remote, remote_status, sync_hash)
        return "updated"

    def _create(
        self,
        repository_id: int,
        project_id: int,
        remote: RemoteIssue,
        remote_status: IssueStatus,
        sync_hash: str,
    ):
        now = utcnow()
        row = Issue(
            project_id=project_id,
            repository_id=repository_id,
            github_issue_number=remote.number,
            github_issue_id=remote.id,
            title=remote.title,
            original_description=remote.body,
            expanded_description=None,
            status=remote_status,
            priority=IssuePriority.MEDIUM,
            created_by=self.created_by,
            assigned_to=remote.assignee,
            github_pr_number=remote.pull_request_number,
            github_pr_id=remote.pull_request_id,
            synced_status=remote_status,
            sync_hash=sync_hash,
            last_synced_at=now,
            completed_at=(
                _normalize_utc_naive(remote.closed_at) or now
                if remote_status == IssueStatus.COMPLETED
                else None
            ),
        )
        try:
            self.db.add(row)
            self.db.commit()
        except IntegrityError as e:
            # Another writer stored the same remote issue first.
            self.db.rollback()
            raise ReconciliationError(f"Issue #{remote.number}: duplicate remote issue id {remote.id}") from e

    def _next_status(self, row: Issue, remote_status: IssueStatus) -> IssueStatus:
        current = row.status
        if current == row.synced_status:
            return remote_status
        # The local status was changed outside sync.
        if current in MANUAL_TERMINAL_STATUSES:
            return current
        if remote_status != row.synced_status:
            return remote_status
        return current

    def _update(self, row: Issue, remote: RemoteIssue, remote_status: IssueStatus, sync_hash: str):
        now = utcnow()
        row.title = remote.title
        row.original_description = remote.body
        row.github_issue_number = remote.number
        row.github_pr_number = remote.pull_request_number
        row.github_pr_id = remote.pull_request_id

        new_status = self._next_status(row, remote_status)
        if new_status != row.status:
            if new_status == IssueStatus.COMPLETED:
                row.completed_at = _normalize_utc_naive(remote.closed_at) or now
            elif row.status == IssueStatus.COMPLETED:
                row.completed_at = None
            row.status = new_status

        row.synced_status = remote_status
        row.sync_hash = sync_hash
        row.last_synced_at = now
        self.db.commit()
