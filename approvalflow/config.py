from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import DEFAULT_ADMIN_ROLE, DEFAULT_CLIENT_URL, DEFAULT_REVIEWER_ROLE


class RedisConfig(BaseModel):
    """Configuration for the Redis notification backend."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class NotificationConfig(BaseModel):
    """In-app notification delivery settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class EmailConfig(BaseModel):
    """SMTP settings. Without a host, emails are only logged."""

    host: Optional[str] = None
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    sender_email: Optional[str] = None
    sender_name: str = "Document Approvals"


class RoleConfig(BaseModel):
    """Role names granting workflow-wide authority."""

    admin_role: str = DEFAULT_ADMIN_ROLE
    reviewer_role: str = DEFAULT_REVIEWER_ROLE


class ApprovalConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    audit_database_url: Optional[str] = None
    notifications: NotificationConfig = NotificationConfig()
    email: EmailConfig = EmailConfig()
    roles: RoleConfig = RoleConfig()
    client_url: str = DEFAULT_CLIENT_URL
    max_conflict_retries: int = 3
    retry_base_delay: float = 0.05


def load_config(path: Optional[str] = None) -> ApprovalConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to APPROVALFLOW_CONFIG
            env variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("APPROVALFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ApprovalConfig(**data)
    else:
        config = ApprovalConfig()

    env_db_url = os.getenv("APPROVALFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_audit_url = os.getenv("APPROVALFLOW_AUDIT_DATABASE_URL")
    if env_audit_url:
        config.audit_database_url = env_audit_url
    env_smtp_host = os.getenv("APPROVALFLOW_SMTP_HOST")
    if env_smtp_host:
        config.email = config.email.model_copy(update={"host": env_smtp_host})
    return config
