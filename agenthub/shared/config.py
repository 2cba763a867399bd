"""
Centralized configuration management for AgentHub.
Uses environment variables with secure defaults following 12-factor app principles.
"""

import os
import secrets
from dataclasses import dataclass, field
from dotenv import load_dotenv
from enum import Enum


class StoreBackend(Enum):
    """Job store implementations."""
    MEMORY = "memory"
    JSON = "json"


@dataclass(frozen=True)
class SchedulerConfig:
    """Worker pool and retry policy for the job scheduler."""
    max_workers: int = 4
    per_tenant_concurrency: int = 1  # 1 = same-tenant jobs strictly serialized
    default_max_retries: int = 3
    item_timeout_seconds: float = 120.0  # watchdog around each agent invocation
    store_write_attempts: int = 3
    store_backoff_base_seconds: float = 0.5
    auto_retry: bool = True  # failed jobs requeue themselves until max_retries
    retry_backoff_base_seconds: float = 2.0  # delay before retry n is base * 2**n


@dataclass(frozen=True)
class StoreConfig:
    """Job store configuration."""
    backend: StoreBackend = StoreBackend.MEMORY
    file_path: str = "/app/data/jobs.json"
    backup_on_write: bool = True


@dataclass(frozen=True)
class VaultConfig:
    """Credential vault configuration."""
    encryption_key: str = field(default_factory=lambda: secrets.token_hex(32))


@dataclass(frozen=True)
class BroadcastConfig:
    """Live connection fan-out configuration."""
    send_timeout_seconds: float = 5.0


@dataclass(frozen=True)
class AnthropicConfig:
    """Model settings shared by LLM-backed agents. API keys come from tenant bundles."""
    model: str = "claude-sonnet-4-0"
    max_tokens: int = 1024
    api_base_url: str = "https://api.anthropic.com"


@dataclass(frozen=True)
class EnrichmentConfig:
    """Default company enrichment endpoint used by the sage agent."""
    base_url: str = "https://api.enrichment.example.com/v1"
    timeout_seconds: float = 15.0


@dataclass(frozen=True)
class AppConfig:
    """Root application configuration - assembled from environment."""
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    vault: VaultConfig = field(default_factory=VaultConfig)
    broadcast: BroadcastConfig = field(default_factory=BroadcastConfig)
    anthropic: AnthropicConfig = field(default_factory=AnthropicConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    seed_file: str = ""  # Optional JSON fixture with tenants, leads and credentials
    log_file_dir: str = ""  # Directory for timestamped log files; empty = no file logging
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"
    environment: str = "production"


def load_config() -> AppConfig:
    """
    Load configuration from environment variables.
    Secure defaults are used when env vars are not set.
    """
    load_dotenv()  # Load .env file if present

    scheduler = SchedulerConfig(
        max_workers=int(os.environ.get("SCHEDULER_WORKERS", "4")),
        per_tenant_concurrency=int(os.environ.get("PER_TENANT_CONCURRENCY", "1")),
        default_max_retries=int(os.environ.get("JOB_MAX_RETRIES", "3")),
        item_timeout_seconds=float(os.environ.get("ITEM_TIMEOUT_SECONDS", "120")),
        store_write_attempts=int(os.environ.get("STORE_WRITE_ATTEMPTS", "3")),
        store_backoff_base_seconds=float(os.environ.get("STORE_BACKOFF_BASE", "0.5")),
        auto_retry=os.environ.get("JOB_AUTO_RETRY", "true").lower() == "true",
        retry_backoff_base_seconds=float(os.environ.get("JOB_RETRY_BACKOFF_BASE", "2.0")),
    )

    backend_str = os.environ.get("JOB_STORE_BACKEND", "memory").lower()
    try:
        backend = StoreBackend(backend_str)
    except ValueError:
        backend = StoreBackend.MEMORY
    store = StoreConfig(
        backend=backend,
        file_path=os.environ.get("JOB_STORE_PATH", "/app/data/jobs.json"),
    )

    encryption_key = os.environ.get("CREDENTIAL_ENCRYPTION_KEY", "")
    vault = VaultConfig(encryption_key=encryption_key) if encryption_key else VaultConfig()

    broadcast = BroadcastConfig(
        send_timeout_seconds=float(os.environ.get("WS_SEND_TIMEOUT", "5.0")),
    )

    anthropic = AnthropicConfig(
        model=os.environ.get("ANTHROPIC_MODEL", "claude-sonnet-4-0"),
        max_tokens=int(os.environ.get("ANTHROPIC_MAX_TOKENS", "1024")),
    )

    enrichment = EnrichmentConfig(
        base_url=os.environ.get("ENRICHMENT_BASE_URL", "https://api.enrichment.example.com/v1"),
        timeout_seconds=float(os.environ.get("ENRICHMENT_TIMEOUT", "15")),
    )

    return AppConfig(
        scheduler=scheduler,
        store=store,
        vault=vault,
        broadcast=broadcast,
        anthropic=anthropic,
        enrichment=enrichment,
        seed_file=os.environ.get("SEED_FILE", ""),
        log_file_dir=os.environ.get("LOG_FILE_DIR", ""),
        api_host=os.environ.get("API_HOST", "0.0.0.0"),
        api_port=int(os.environ.get("API_PORT", "8000")),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        environment=os.environ.get("ENVIRONMENT", "production"),
    )
