import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from data_models import Repository, Workflow, format_timestamp, parse_timestamp
from errors import ConflictError, PersistenceError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class CacheWriteResult:
    """Outcome of a best-effort cache write."""
    ok: bool
    error: Optional[str] = None


def _now_iso() -> str:
    return format_timestamp(datetime.now(timezone.utc))


class OmniLensDatabase:
    """Manages all database interactions for OmniLens."""

    def __init__(self, db_path: str = "data/omnilens.db"):
        """
        Initializes the database connection.

        :param db_path: The path to the SQLite database file.
        """
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Establishes a connection to the SQLite database."""
        if self.conn is None:
            try:
                self.conn = sqlite3.connect(self.db_path)
                self.conn.row_factory = sqlite3.Row  # Return rows as dict-like objects
                # Enable foreign key support
                self.conn.execute("PRAGMA foreign_keys = 1")
            except sqlite3.Error as e:
                logger.error("Error connecting to database %s: %s", self.db_path, e)
                raise

    def close(self):
        """Closes the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def _require_connection(self) -> sqlite3.Connection:
        if not self.conn:
            raise ConnectionError("Database is not connected. Call connect() first.")
        return self.conn

    def initialize_schema(self):
        """
        Initializes the database schema by creating tables and indexes if they don't exist.
        """
        conn = self._require_connection()

        schema_script = """
        -- Users Table: One record per GitHub login.
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,             -- GitHub's numeric user id, as text
            login TEXT NOT NULL,
            name TEXT,
            email TEXT,
            avatar_url TEXT,
            created_at TIMESTAMP NOT NULL
        );

        -- Accounts Table: Delegated OAuth tokens, encrypted at rest.
        CREATE TABLE IF NOT EXISTS accounts (
            user_id TEXT NOT NULL,
            provider TEXT NOT NULL,
            access_token_encrypted TEXT NOT NULL,
            scope TEXT,
            updated_at TIMESTAMP NOT NULL,
            PRIMARY KEY (user_id, provider),
            FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
        );

        -- Repositories Table: Repositories a user added to the dashboard.
        CREATE TABLE IF NOT EXISTS repositories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            slug TEXT NOT NULL,              -- 'owner-repo'
            repo_path TEXT NOT NULL,         -- 'owner/repo'
            display_name TEXT NOT NULL,
            html_url TEXT NOT NULL,
            default_branch TEXT NOT NULL,
            avatar_url TEXT,
            visibility TEXT NOT NULL DEFAULT 'public',
            added_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL,
            UNIQUE(user_id, slug)
        );

        -- Workflows Table: Cache of GitHub's workflow list per repository.
        CREATE TABLE IF NOT EXISTS workflows (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            repo_slug TEXT NOT NULL,
            workflow_id INTEGER NOT NULL,    -- GitHub's workflow id
            name TEXT NOT NULL,
            path TEXT NOT NULL,
            state TEXT NOT NULL,
            created_at TIMESTAMP,
            updated_at TIMESTAMP,
            deleted_at TIMESTAMP,
            cached_at TIMESTAMP NOT NULL,
            UNIQUE(user_id, repo_slug, workflow_id),
            FOREIGN KEY(user_id, repo_slug) REFERENCES repositories(user_id, slug) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_repositories_user ON repositories(user_id);
        CREATE INDEX IF NOT EXISTS idx_workflows_repo ON workflows(user_id, repo_slug, cached_at);
        """

        try:
            conn.executescript(schema_script)
            conn.commit()
            logger.debug("Database schema initialized")
        except sqlite3.Error as e:
            logger.error("An error occurred during schema initialization: %s", e)
            conn.rollback()
            raise

    # --- users and accounts -------------------------------------------------

    def upsert_user(self, user_id: str, login: str, name: Optional[str] = None,
                    email: Optional[str] = None, avatar_url: Optional[str] = None):
        conn = self._require_connection()
        conn.execute("""
            INSERT INTO users (id, login, name, email, avatar_url, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                login = excluded.login,
                name = excluded.name,
                email = excluded.email,
                avatar_url = excluded.avatar_url
        """, (user_id, login, name, email, avatar_url, _now_iso()))
        conn.commit()

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        conn = self._require_connection()
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None

    def save_delegated_token(self, user_id: str, encrypted_token: str,
                             scope: Optional[str] = None, provider: str = "github"):
        """
        Stores (or replaces) the encrypted access token of a user.

        :param user_id: Owner of the token; the user row must exist.
        :param encrypted_token: Token already encrypted by TokenCipher.
        :param scope: Scopes GitHub granted.
        """
        conn = self._require_connection()
        conn.execute("""
            INSERT INTO accounts (user_id, provider, access_token_encrypted, scope, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id, provider) DO UPDATE SET
                access_token_encrypted = excluded.access_token_encrypted,
                scope = excluded.scope,
                updated_at = excluded.updated_at
        """, (user_id, provider, encrypted_token, scope, _now_iso()))
        conn.commit()

    def get_delegated_token_encrypted(self, user_id: str, provider: str = "github") -> Optional[str]:
        conn = self._require_connection()
        row = conn.execute(
            "SELECT access_token_encrypted FROM accounts WHERE user_id = ? AND provider = ?",
            (user_id, provider),
        ).fetchone()
        return row["access_token_encrypted"] if row else None

    # --- repositories -------------------------------------------------------

    @staticmethod
    def _row_to_repository(row: sqlite3.Row) -> Repository:
        return Repository(
            slug=row["slug"],
            repo_path=row["repo_path"],
            display_name=row["display_name"],
            html_url=row["html_url"],
            default_branch=row["default_branch"],
            user_id=row["user_id"],
            avatar_url=row["avatar_url"],
            visibility=row["visibility"],
            added_at=row["added_at"],
            updated_at=row["updated_at"],
        )

    def load_user_repos(self, user_id: str) -> List[Repository]:
        """Repositories of a user, oldest first."""
        conn = self._require_connection()
        rows = conn.execute(
            "SELECT * FROM repositories WHERE user_id = ? ORDER BY added_at, id",
            (user_id,),
        ).fetchall()
        return [self._row_to_repository(row) for row in rows]

    def get_user_repo(self, slug: str, user_id: str) -> Optional[Repository]:
        conn = self._require_connection()
        row = conn.execute(
            "SELECT * FROM repositories WHERE slug = ? AND user_id = ?",
            (slug, user_id),
        ).fetchone()
        return self._row_to_repository(row) if row else None

    def add_user_repo(self, repo: Repository, max_repositories: Optional[int] = None) -> Repository:
        """
        Adds a repository to a user's dashboard.

        :param repo: Repository to add; added_at/updated_at default to now.
        :param max_repositories: Upper bound on repositories per user, if any.
        :return: The stored repository
        :raises ConflictError: If the user already added this slug
        :raises ValidationError: If the user is at the repository limit
        """
        conn = self._require_connection()

        if max_repositories is not None:
            count = conn.execute(
                "SELECT COUNT(*) FROM repositories WHERE user_id = ?", (repo.user_id,)
            ).fetchone()[0]
            if count >= max_repositories:
                raise ValidationError(
                    f"Maximum of {max_repositories} repositories reached. Remove one before adding another."
                )

        now = _now_iso()
        added_at = format_timestamp(repo.added_at) or now
        updated_at = format_timestamp(repo.updated_at) or now
        try:
            conn.execute("""
                INSERT INTO repositories (user_id, slug, repo_path, display_name, html_url,
                                          default_branch, avatar_url, visibility, added_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (repo.user_id, repo.slug, repo.repo_path, repo.display_name, repo.html_url,
                  repo.default_branch, repo.avatar_url, repo.visibility, added_at, updated_at))
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise ConflictError("Repository already added")

        return self.get_user_repo(repo.slug, repo.user_id)

    def remove_user_repo(self, slug: str, user_id: str) -> Optional[Repository]:
        """
        Deletes a repository and, by cascade, its cached workflows.

        :return: The deleted repository, or None if it did not exist.
        """
        conn = self._require_connection()
        repo = self.get_user_repo(slug, user_id)
        if repo is None:
            return None
        conn.execute("DELETE FROM repositories WHERE slug = ? AND user_id = ?", (slug, user_id))
        conn.commit()
        return repo

    # --- workflow cache -----------------------------------------------------

    def get_workflows(self, repo_slug: str, user_id: str) -> List[Workflow]:
        conn = self._require_connection()
        rows = conn.execute("""
            SELECT workflow_id, name, path, state, created_at, updated_at, deleted_at
            FROM workflows
            WHERE repo_slug = ? AND user_id = ?
            ORDER BY id
        """, (repo_slug, user_id)).fetchall()
        return [
            Workflow(
                id=row["workflow_id"],
                name=row["name"],
                path=row["path"],
                state=row["state"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                deleted_at=row["deleted_at"],
            )
            for row in rows
        ]

    def get_workflows_cached_at(self, repo_slug: str, user_id: str) -> Optional[datetime]:
        """When the workflow list of a repository was last written, or None."""
        conn = self._require_connection()
        row = conn.execute(
            "SELECT MAX(cached_at) AS cached_at FROM workflows WHERE repo_slug = ? AND user_id = ?",
            (repo_slug, user_id),
        ).fetchone()
        return parse_timestamp(row["cached_at"]) if row else None

    def save_workflows(self, repo_slug: str, workflows: List[Workflow], user_id: str,
                       cached_at: Optional[datetime] = None):
        """
        Replaces the cached workflow list of a repository in one transaction.

        :param repo_slug: Slug of a repository the user has added.
        :param workflows: Full list as returned by GitHub.
        :param user_id: Owner of the repository.
        :param cached_at: Write time to record (default: now).
        :raises PersistenceError: If the write fails; nothing is changed then.
        """
        conn = self._require_connection()
        stamp = format_timestamp(cached_at) if cached_at else _now_iso()

        cursor = conn.cursor()
        try:
            cursor.execute("DELETE FROM workflows WHERE repo_slug = ? AND user_id = ?", (repo_slug, user_id))
            cursor.executemany("""
                INSERT INTO workflows (user_id, repo_slug, workflow_id, name, path, state,
                                       created_at, updated_at, deleted_at, cached_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, [
                (user_id, repo_slug, wf.id, wf.name, wf.path, wf.state,
                 format_timestamp(wf.created_at), format_timestamp(wf.updated_at),
                 format_timestamp(wf.deleted_at), stamp)
                for wf in workflows
            ])
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("Saving workflows for %s failed: %s", repo_slug, e)
            raise PersistenceError(f"Failed to save workflows for {repo_slug}") from e

    def delete_workflows(self, repo_slug: str, user_id: str) -> int:
        conn = self._require_connection()
        cursor = conn.execute("DELETE FROM workflows WHERE repo_slug = ? AND user_id = ?", (repo_slug, user_id))
        conn.commit()
        return cursor.rowcount

    def refresh_workflow_cache(self, repo_slug: str, workflows: List[Workflow], user_id: str,
                               cached_at: Optional[datetime] = None) -> CacheWriteResult:
        """Best-effort ``save_workflows``: failures are reported, never raised."""
        try:
            self.save_workflows(repo_slug, workflows, user_id, cached_at=cached_at)
        except PersistenceError as e:
            logger.warning("Workflow cache refresh failed for %s: %s", repo_slug, e.message)
            return CacheWriteResult(ok=False, error=e.message)
        return CacheWriteResult(ok=True)
