"""
Configuration Manager for OmniLens

Resolves the application configuration once at process start and provides
encryption for the per-user GitHub tokens stored in the database.
"""

import base64
import hashlib
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from dotenv import load_dotenv


DEFAULT_BASE_URLS = {
    "development": "http://localhost:5002",
    "test": "http://localhost",
}


@dataclass(frozen=True)
class AppConfig:
    """Immutable application settings handed to ``create_app``."""

    secret_key: str
    database_path: str = "data/omnilens.db"
    environment: str = "development"
    base_url: str = "http://localhost:5002"
    github_api_base: str = "https://api.github.com"
    github_oauth_base: str = "https://github.com"
    github_status_url: str = "https://www.githubstatus.com/api/v2/components.json"
    github_client_id: Optional[str] = None
    github_client_secret: Optional[str] = None
    oauth_scopes: str = "repo read:user user:email"
    user_agent: str = "OmniLens-Dashboard"
    request_timeout_seconds: float = 20.0
    workflow_cache_ttl_seconds: int = 300
    max_repositories: int = 12
    max_run_pages: int = 10
    dashboard_workers: int = 8

    @property
    def oauth_callback_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/auth/github/callback"

    @property
    def oauth_configured(self) -> bool:
        return bool(self.github_client_id and self.github_client_secret)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "AppConfig":
        """
        Build the configuration from environment variables (and a .env file).

        The public base URL is chosen here, once, from ``OMNILENS_BASE_URL`` or
        the environment name. Production deployments must set it explicitly.

        Args:
            env_file: Optional path to a dotenv file (default: ./.env)

        Returns:
            AppConfig instance
        """
        load_dotenv(env_file)

        environment = os.getenv("OMNILENS_ENV", "development").strip().lower()
        secret_key = os.getenv("SECRET_KEY")
        if not secret_key:
            if environment == "production":
                raise RuntimeError("SECRET_KEY must be set in production")
            secret_key = "omnilens-development-secret"

        base_url = os.getenv("OMNILENS_BASE_URL") or DEFAULT_BASE_URLS.get(environment)
        if not base_url:
            raise RuntimeError(
                f"OMNILENS_BASE_URL must be set for environment '{environment}'"
            )

        return cls(
            secret_key=secret_key,
            database_path=os.getenv("DB_PATH", "data/omnilens.db"),
            environment=environment,
            base_url=base_url,
            github_api_base=os.getenv("GITHUB_API_BASE", "https://api.github.com").rstrip("/"),
            github_oauth_base=os.getenv("GITHUB_OAUTH_BASE", "https://github.com").rstrip("/"),
            github_client_id=os.getenv("GITHUB_CLIENT_ID"),
            github_client_secret=os.getenv("GITHUB_CLIENT_SECRET"),
            request_timeout_seconds=float(os.getenv("GITHUB_REQUEST_TIMEOUT", "20")),
            workflow_cache_ttl_seconds=int(os.getenv("WORKFLOW_CACHE_TTL_SECONDS", "300")),
            max_repositories=int(os.getenv("MAX_REPOSITORIES", "12")),
            max_run_pages=int(os.getenv("MAX_RUN_PAGES", "10")),
            dashboard_workers=int(os.getenv("DASHBOARD_WORKERS", "8")),
        )


    @classmethod
    def github_client_from_env(cls, env_file: Optional[str] = None) -> "AppConfig":
        """
        Only the GitHub API settings, for callers that run no web server.

        Never requires SECRET_KEY or OMNILENS_BASE_URL, whatever OMNILENS_ENV says.
        """
        load_dotenv(env_file)
        return cls(
            secret_key=os.getenv("SECRET_KEY", ""),
            environment=os.getenv("OMNILENS_ENV", "development").strip().lower(),
            github_api_base=os.getenv("GITHUB_API_BASE", "https://api.github.com").rstrip("/"),
            request_timeout_seconds=float(os.getenv("GITHUB_REQUEST_TIMEOUT", "20")),
            max_run_pages=int(os.getenv("MAX_RUN_PAGES", "10")),
        )


class TokenCipher:
    """Encrypts delegated GitHub tokens with a Fernet key derived from the app secret."""

    def __init__(self, secret_key: str):
        if not secret_key:
            raise ValueError("A secret key is required to encrypt GitHub tokens")
        digest = hashlib.sha256(secret_key.encode("utf-8")).digest()
        self._cipher = Fernet(base64.urlsafe_b64encode(digest))

    def encrypt_token(self, token: str) -> str:
        """
        Encrypt token using Fernet symmetric encryption.

        Args:
            token: Plaintext token

        Returns:
            Encrypted token as string
        """
        if not token:
            raise ValueError("Token must not be empty")
        return self._cipher.encrypt(token.encode("utf-8")).decode("utf-8")

    def decrypt_token(self, encrypted_token: Optional[str]) -> Optional[str]:
        """
        Decrypt a stored token.

        Returns None when nothing is stored or the secret key was rotated.
        """
        if not encrypted_token:
            return None
        try:
            return self._cipher.decrypt(encrypted_token.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            return None
