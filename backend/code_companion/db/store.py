"""Persistence layer for pull requests, commits, tickets and analysis history.

All writes are idempotent upserts keyed by natural identifiers:

* pull requests by ``(pr_number, repo_url)``
* commits by ``sha``
* tickets by ``ticket_key``
"""

from __future__ import annotations

import sqlite3
from typing import Any, Sequence, TypeVar

import orjson

from code_companion.core.errors import StoreError
from code_companion.db.sqlite import SQLiteDatabase, pack_vector, unpack_vector
from code_companion.models.entities import (
    AllowedRepo,
    CodebaseNode,
    CommitRecord,
    ConversationMessage,
    FileChange,
    IssueRecord,
    ProjectProfile,
    PullRequestRecord,
    TicketRecord,
)
from code_companion.utils.ids import new_id
from code_companion.utils.time import from_ms, now_ms, to_ms

T = TypeVar("T")


def _dumps(value: Any) -> str:
    return orjson.dumps(value, default=str).decode("utf-8")


def _read_back(row: T | None, what: str) -> T:
    if row is None:
        raise StoreError(f"Stored {what} could not be read back")
    return row


def _loads(value: str | None, default: Any) -> Any:
    if not value:
        return default
    return orjson.loads(value)


class KnowledgeStore:
    """Typed access to the SQLite tables declared in ``schema.sql``."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    # Pull requests ----------------------------------------------------

    def get_pull_request(self, pr_number: int, repo_url: str) -> PullRequestRecord | None:
        row = self.db.fetchone(
            "SELECT * FROM pull_requests WHERE pr_number = ? AND repo_url = ?",
            [pr_number, repo_url],
        )
        return _row_to_pr(row) if row else None

    def upsert_pull_request(
        self,
        *,
        pr_number: int,
        repo_url: str,
        title: str,
        description: str | None,
        author: str,
        pr_url: str,
        merged_at: Any,
        state: str,
        labels: Sequence[str],
        files_changed: Sequence[FileChange],
        diff_content: str | None,
        embedding: Sequence[float],
    ) -> PullRequestRecord:
        now = now_ms()
        self.db.execute(
            """
            INSERT INTO pull_requests (
              id, pr_number, repo_url, title, description, author, pr_url, merged_at,
              state, labels_json, files_json, diff_content, embedding, embedding_dim,
              created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (pr_number, repo_url) DO UPDATE SET
              title = excluded.title,
              description = excluded.description,
              author = excluded.author,
              pr_url = excluded.pr_url,
              merged_at = excluded.merged_at,
              state = excluded.state,
              labels_json = excluded.labels_json,
              files_json = excluded.files_json,
              diff_content = excluded.diff_content,
              embedding = excluded.embedding,
              embedding_dim = excluded.embedding_dim,
              updated_at = excluded.updated_at
            """,
            [
                new_id("pr"),
                pr_number,
                repo_url,
                title,
                description,
                author,
                pr_url,
                to_ms(merged_at),
                state,
                _dumps(list(labels)),
                _dumps([change.to_dict() for change in files_changed]),
                diff_content,
                pack_vector(embedding),
                len(embedding),
                now,
                now,
            ],
        )
        self.db.commit()
        return _read_back(self.get_pull_request(pr_number, repo_url), f"pull request #{pr_number}")

    def list_pull_requests(self, *, merged_only: bool = False) -> list[PullRequestRecord]:
        """Pull requests that carry an embedding, i.e. search candidates."""
        sql = "SELECT * FROM pull_requests WHERE embedding_dim > 0"
        if merged_only:
            sql += " AND state = 'merged'"
        return [_row_to_pr(row) for row in self.db.query(sql + " ORDER BY created_at")]

    # Commits ----------------------------------------------------------

    def get_commit(self, sha: str) -> CommitRecord | None:
        row = self.db.fetchone("SELECT * FROM commits WHERE sha = ?", [sha])
        return _row_to_commit(row) if row else None

    def insert_commit(
        self,
        *,
        sha: str,
        message: str,
        author: str,
        author_email: str | None,
        repo_url: str,
        commit_url: str,
        committed_at: Any,
        files_changed: Sequence[FileChange],
        diff_content: str | None,
        embedding: Sequence[float],
    ) -> tuple[CommitRecord, bool]:
        """Insert a commit unless its sha is known. Returns ``(record, created)``."""
        cursor = self.db.execute(
            """
            INSERT OR IGNORE INTO commits (
              id, sha, message, author, author_email, repo_url, commit_url, committed_at,
              files_json, diff_content, embedding, embedding_dim, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                new_id("commit"),
                sha,
                message,
                author,
                author_email,
                repo_url,
                commit_url,
                to_ms(committed_at),
                _dumps([change.to_dict() for change in files_changed]),
                diff_content,
                pack_vector(embedding),
                len(embedding),
                now_ms(),
            ],
        )
        self.db.commit()
        return _read_back(self.get_commit(sha), f"commit {sha}"), cursor.rowcount > 0

    def list_commits(self) -> list[CommitRecord]:
        rows = self.db.query("SELECT * FROM commits WHERE embedding_dim > 0 ORDER BY created_at")
        return [_row_to_commit(row) for row in rows]

    # Tickets ----------------------------------------------------------

    def get_ticket(self, ticket_key: str) -> TicketRecord | None:
        row = self.db.fetchone("SELECT * FROM tickets WHERE ticket_key = ?", [ticket_key])
        return _row_to_ticket(row) if row else None

    def upsert_ticket(
        self,
        *,
        ticket_key: str,
        title: str,
        description: str | None,
        status: str,
        priority: str | None,
        assignee: str | None,
        ticket_url: str,
        embedding: Sequence[float],
    ) -> TicketRecord:
        now = now_ms()
        self.db.execute(
            """
            INSERT INTO tickets (
              id, ticket_key, title, description, status, priority, assignee, ticket_url,
              embedding, embedding_dim, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (ticket_key) DO UPDATE SET
              title = excluded.title,
              description = excluded.description,
              status = excluded.status,
              priority = excluded.priority,
              assignee = excluded.assignee,
              ticket_url = excluded.ticket_url,
              embedding = excluded.embedding,
              embedding_dim = excluded.embedding_dim,
              updated_at = excluded.updated_at
            """,
            [
                new_id("ticket"),
                ticket_key,
                title,
                description,
                status,
                priority,
                assignee,
                ticket_url,
                pack_vector(embedding),
                len(embedding),
                now,
                now,
            ],
        )
        self.db.commit()
        return _read_back(self.get_ticket(ticket_key), f"ticket {ticket_key}")

    def list_tickets(self) -> list[TicketRecord]:
        rows = self.db.query("SELECT * FROM tickets WHERE embedding_dim > 0 ORDER BY created_at")
        return [_row_to_ticket(row) for row in rows]

    # Analysis history -------------------------------------------------

    def save_analysis(
        self,
        input_text: str,
        input_type: str,
        embedding: Sequence[float],
        result: dict[str, Any],
    ) -> str:
        query_id = new_id("qry")
        self.db.execute(
            """
            INSERT INTO analysis_queries (id, input_text, input_type, embedding, result_json, status, confidence, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                query_id,
                input_text,
                input_type,
                pack_vector(embedding),
                _dumps(result),
                result.get("status", "unknown"),
                float(result.get("confidence", 0.0)),
                now_ms(),
            ],
        )
        self.db.commit()
        return query_id

    def recent_analyses(self, limit: int = 20) -> list[dict[str, Any]]:
        rows = self.db.query(
            """
            SELECT id, input_type, status, confidence, created_at
            FROM analysis_queries ORDER BY created_at DESC, rowid DESC LIMIT ?
            """,
            [limit],
        )
        return [
            {
                "id": row["id"],
                "inputType": row["input_type"],
                "status": row["status"],
                "confidence": row["confidence"],
                "createdAt": from_ms(row["created_at"]),
            }
            for row in rows
        ]

    # Allowed repositories ---------------------------------------------

    def list_allowed_repos(self, active_only: bool = True) -> list[AllowedRepo]:
        sql = "SELECT * FROM allowed_repos"
        if active_only:
            sql += " WHERE is_active = 1"
        return [_row_to_repo(row) for row in self.db.query(sql + " ORDER BY added_at DESC, rowid DESC")]

    def get_allowed_repo(self, repo_id: str) -> AllowedRepo | None:
        row = self.db.fetchone("SELECT * FROM allowed_repos WHERE id = ?", [repo_id])
        return _row_to_repo(row) if row else None

    def find_allowed_repo(self, owner: str, name: str) -> AllowedRepo | None:
        row = self.db.fetchone("SELECT * FROM allowed_repos WHERE owner = ? AND name = ?", [owner, name])
        return _row_to_repo(row) if row else None

    def add_allowed_repo(self, owner: str, name: str, description: str | None = None) -> AllowedRepo:
        repo_id = new_id("repo")
        self.db.execute(
            """
            INSERT INTO allowed_repos (id, repo_url, owner, name, is_active, description, added_at, pr_count)
            VALUES (?, ?, ?, ?, 1, ?, ?, 0)
            """,
            [repo_id, f"https://github.com/{owner}/{name}", owner, name, description, now_ms()],
        )
        self.db.commit()
        return _read_back(self.get_allowed_repo(repo_id), f"repository {owner}/{name}")

    def set_repo_active(self, repo_id: str, active: bool, description: str | None = None) -> AllowedRepo | None:
        params: list[Any] = [int(active)]
        sql = "UPDATE allowed_repos SET is_active = ?"
        if description:
            sql += ", description = ?"
            params.append(description)
        params.append(repo_id)
        cursor = self.db.execute(sql + " WHERE id = ?", params)
        self.db.commit()
        if cursor.rowcount == 0:
            return None
        return self.get_allowed_repo(repo_id)

    def touch_repo(self, repo_id: str, pr_count: int | None = None) -> AllowedRepo | None:
        if pr_count is None:
            cursor = self.db.execute(
                "UPDATE allowed_repos SET last_synced_at = ? WHERE id = ?",
                [now_ms(), repo_id],
            )
        else:
            cursor = self.db.execute(
                "UPDATE allowed_repos SET last_synced_at = ?, pr_count = ? WHERE id = ?",
                [now_ms(), pr_count, repo_id],
            )
        self.db.commit()
        if cursor.rowcount == 0:
            return None
        return self.get_allowed_repo(repo_id)

    def record_repo_sync(self, owner: str, name: str, processed: int) -> bool:
        """Stamp ``last_synced_at`` and add ``processed`` to the PR count."""
        cursor = self.db.execute(
            "UPDATE allowed_repos SET last_synced_at = ?, pr_count = pr_count + ? WHERE owner = ? AND name = ?",
            [now_ms(), processed, owner, name],
        )
        self.db.commit()
        return cursor.rowcount > 0

    # Project profile --------------------------------------------------

    def get_project_profile(self, project_name: str) -> ProjectProfile | None:
        row = self.db.fetchone("SELECT * FROM project_profiles WHERE project_name = ?", [project_name])
        if not row:
            return None
        return ProjectProfile(
            project_name=row["project_name"],
            tech_stack=_loads(row["tech_stack_json"], {}),
            directory_structure=_loads(row["directory_json"], {}),
            architecture_overview=row["architecture_overview"],
            last_scanned_at=from_ms(row["last_scanned_at"]),
        )

    def upsert_project_profile(self, profile: ProjectProfile) -> None:
        self.db.execute(
            """
            INSERT INTO project_profiles (project_name, tech_stack_json, directory_json, architecture_overview, last_scanned_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (project_name) DO UPDATE SET
              tech_stack_json = excluded.tech_stack_json,
              directory_json = excluded.directory_json,
              architecture_overview = excluded.architecture_overview,
              last_scanned_at = excluded.last_scanned_at
            """,
            [
                profile.project_name,
                _dumps(profile.tech_stack),
                _dumps(profile.directory_structure),
                profile.architecture_overview,
                to_ms(profile.last_scanned_at),
            ],
        )
        self.db.commit()

    # Codebase graph ---------------------------------------------------

    def upsert_codebase_nodes(self, nodes: dict[str, list[str]]) -> int:
        """Replace the imports recorded for each file; returns the number of files written."""
        scanned_at = now_ms()
        for file, imports in nodes.items():
            self.db.execute(
                """
                INSERT INTO codebase_nodes (file, imports_json, last_scanned_at)
                VALUES (?, ?, ?)
                ON CONFLICT (file) DO UPDATE SET
                  imports_json = excluded.imports_json,
                  last_scanned_at = excluded.last_scanned_at
                """,
                [file, _dumps(imports), scanned_at],
            )
        self.db.commit()
        return len(nodes)

    def get_codebase_node(self, file: str) -> CodebaseNode | None:
        row = self.db.fetchone("SELECT * FROM codebase_nodes WHERE file = ?", [file])
        return _row_to_node(row) if row else None

    def list_codebase_nodes(self) -> list[CodebaseNode]:
        rows = self.db.query("SELECT * FROM codebase_nodes ORDER BY file")
        return [_row_to_node(row) for row in rows]

    # Issues -----------------------------------------------------------

    def create_issue(self, issue: IssueRecord) -> IssueRecord:
        now = now_ms()
        self.db.execute(
            """
            INSERT INTO issues (issue_id, user_id, email, title, description, input_type, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                issue.issue_id,
                issue.user_id,
                issue.email,
                issue.title,
                issue.description,
                issue.input_type,
                issue.status,
                now,
                now,
            ],
        )
        self.db.commit()
        return _read_back(self.get_issue(issue.issue_id), f"issue {issue.issue_id}")

    def get_issue(self, issue_id: str) -> IssueRecord | None:
        row = self.db.fetchone("SELECT * FROM issues WHERE issue_id = ?", [issue_id])
        return _row_to_issue(row) if row else None

    def update_issue(
        self,
        issue_id: str,
        *,
        status: str,
        matched_prs: list[dict[str, Any]] | None = None,
        analysis_result: dict[str, Any] | None = None,
        embedding: Sequence[float] | None = None,
    ) -> None:
        assignments = ["status = ?", "updated_at = ?"]
        now = now_ms()
        params: list[Any] = [status, now]
        if matched_prs is not None:
            assignments.append("matched_prs_json = ?")
            params.append(_dumps(matched_prs))
        if analysis_result is not None:
            assignments.append("analysis_json = ?")
            params.append(_dumps(analysis_result))
        if embedding is not None:
            assignments.append("embedding = ?")
            params.append(pack_vector(embedding))
        if status == "resolved":
            assignments.append("resolved_at = ?")
            params.append(now)
        params.append(issue_id)
        self.db.execute(f"UPDATE issues SET {', '.join(assignments)} WHERE issue_id = ?", params)
        self.db.commit()

    def list_issues(
        self,
        *,
        user_id: str | None = None,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[IssueRecord], int]:
        clauses: list[str] = []
        params: list[Any] = []
        if user_id:
            clauses.append("user_id = ?")
            params.append(user_id)
        if status:
            clauses.append("status = ?")
            params.append(status)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.db.query(
            f"SELECT * FROM issues{where} ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )
        total_row = self.db.fetchone(f"SELECT COUNT(*) AS count FROM issues{where}", params)
        return [_row_to_issue(row) for row in rows], int(total_row["count"]) if total_row else 0

    def issue_status_counts(self) -> dict[str, int]:
        rows = self.db.query("SELECT status, COUNT(*) AS count FROM issues GROUP BY status")
        return {row["status"]: int(row["count"]) for row in rows}

    # Conversations ----------------------------------------------------

    def append_message(self, conversation_id: str, role: str, content: str) -> None:
        self.db.execute(
            "INSERT INTO conversation_messages (id, conversation_id, role, content, created_at) VALUES (?, ?, ?, ?, ?)",
            [new_id("msg"), conversation_id, role, content, now_ms()],
        )
        self.db.commit()

    def get_history(self, conversation_id: str) -> list[ConversationMessage]:
        rows = self.db.query(
            "SELECT role, content, created_at FROM conversation_messages WHERE conversation_id = ? ORDER BY created_at, rowid",
            [conversation_id],
        )
        return [
            ConversationMessage(role=row["role"], content=row["content"], timestamp=from_ms(row["created_at"]))
            for row in rows
        ]

    # Stats ------------------------------------------------------------

    def counts(self) -> dict[str, int]:
        tables = {
            "pullRequests": "pull_requests",
            "commits": "commits",
            "tickets": "tickets",
            "analysisQueries": "analysis_queries",
            "issues": "issues",
            "codebaseFiles": "codebase_nodes",
        }
        result: dict[str, int] = {}
        for label, table in tables.items():
            row = self.db.fetchone(f"SELECT COUNT(*) AS count FROM {table}")
            result[label] = int(row["count"]) if row else 0
        return result


def _files(raw: str | None) -> list[FileChange]:
    return [FileChange.from_dict(item) for item in _loads(raw, [])]


def _row_to_pr(row: sqlite3.Row) -> PullRequestRecord:
    return PullRequestRecord(
        id=row["id"],
        pr_number=row["pr_number"],
        title=row["title"],
        description=row["description"],
        author=row["author"],
        repo_url=row["repo_url"],
        pr_url=row["pr_url"],
        merged_at=from_ms(row["merged_at"]),
        state=row["state"],
        labels=_loads(row["labels_json"], []),
        files_changed=_files(row["files_json"]),
        diff_content=row["diff_content"],
        embedding=unpack_vector(row["embedding"]),
        created_at=from_ms(row["created_at"]),
        updated_at=from_ms(row["updated_at"]),
    )


def _row_to_commit(row: sqlite3.Row) -> CommitRecord:
    return CommitRecord(
        id=row["id"],
        sha=row["sha"],
        message=row["message"],
        author=row["author"],
        author_email=row["author_email"],
        repo_url=row["repo_url"],
        commit_url=row["commit_url"],
        committed_at=from_ms(row["committed_at"]),
        files_changed=_files(row["files_json"]),
        diff_content=row["diff_content"],
        embedding=unpack_vector(row["embedding"]),
        created_at=from_ms(row["created_at"]),
    )


def _row_to_ticket(row: sqlite3.Row) -> TicketRecord:
    return TicketRecord(
        id=row["id"],
        ticket_key=row["ticket_key"],
        title=row["title"],
        description=row["description"],
        status=row["status"],
        priority=row["priority"],
        assignee=row["assignee"],
        ticket_url=row["ticket_url"],
        embedding=unpack_vector(row["embedding"]),
        created_at=from_ms(row["created_at"]),
        updated_at=from_ms(row["updated_at"]),
    )


def _row_to_node(row: sqlite3.Row) -> CodebaseNode:
    return CodebaseNode(
        file=row["file"],
        imports=_loads(row["imports_json"], []),
        last_scanned_at=from_ms(row["last_scanned_at"]),
    )


def _row_to_repo(row: sqlite3.Row) -> AllowedRepo:
    return AllowedRepo(
        id=row["id"],
        repo_url=row["repo_url"],
        owner=row["owner"],
        name=row["name"],
        is_active=bool(row["is_active"]),
        description=row["description"],
        added_at=from_ms(row["added_at"]),
        last_synced_at=from_ms(row["last_synced_at"]),
        pr_count=row["pr_count"],
    )


def _row_to_issue(row: sqlite3.Row) -> IssueRecord:
    return IssueRecord(
        issue_id=row["issue_id"],
        user_id=row["user_id"],
        email=row["email"],
        title=row["title"],
        description=row["description"],
        input_type=row["input_type"],
        status=row["status"],
        matched_prs=_loads(row["matched_prs_json"], []),
        analysis_result=_loads(row["analysis_json"], None),
        created_at=from_ms(row["created_at"]),
        resolved_at=from_ms(row["resolved_at"]),
    )


__all__ = ["KnowledgeStore"]
