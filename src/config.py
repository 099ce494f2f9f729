"""Configuration management for the Workspace Runtime MCP server."""

import os
from dataclasses import dataclass
from typing import Optional


VECTOR_BACKENDS = ("memory", "chroma")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # OpenAI Configuration
    openai_api_key: str
    openai_embed_model: str
    openai_embed_dims: int
    openai_timeout: int
    openai_max_retries: int

    # Workspace Configuration
    workspace_id: str
    workspace_root: str
    skills_seed_dir: Optional[str]
    operation_timeout_ms: int
    max_file_size_mb: float
    read_only: bool
    auto_approve: bool
    tool_config_path: Optional[str]

    # Read tracking
    read_tracker_ttl_seconds: float
    read_tracker_max_operations: int

    # Vector store Configuration
    vector_backend: str
    chroma_host: str
    chroma_port: int
    chroma_collection: str

    # Server Configuration
    mcp_port: int
    log_level: str


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Returns:
        Config object with all settings

    Raises:
        ValueError: If required environment variables are missing
    """
    openai_api_key = os.getenv("OPENAI_API_KEY")
    if not openai_api_key:
        raise ValueError(
            "OPENAI_API_KEY environment variable is required. "
            "Please set it in your .env file or environment."
        )

    return Config(
        # OpenAI
        openai_api_key=openai_api_key,
        openai_embed_model=os.getenv("OPENAI_EMBED_MODEL", "text-embedding-3-small"),
        openai_embed_dims=int(os.getenv("OPENAI_EMBED_DIMS", "1536")),
        openai_timeout=int(os.getenv("OPENAI_TIMEOUT", "30")),
        openai_max_retries=int(os.getenv("OPENAI_MAX_RETRIES", "3")),

        # Workspace
        workspace_id=os.getenv("WORKSPACE_ID", "workspace"),
        workspace_root=os.path.abspath(os.getenv("WORKSPACE_ROOT", ".workspace")),
        skills_seed_dir=os.getenv("WORKSPACE_SKILLS_SEED_DIR") or None,
        operation_timeout_ms=int(os.getenv("WORKSPACE_OPERATION_TIMEOUT_MS", "30000")),
        max_file_size_mb=float(os.getenv("WORKSPACE_MAX_FILE_SIZE_MB", "25")),
        read_only=_env_bool("WORKSPACE_READ_ONLY", "false"),
        # MCP hosts show their own confirmation UI before tool calls
        auto_approve=_env_bool("WORKSPACE_AUTO_APPROVE", "true"),
        tool_config_path=os.getenv("WORKSPACE_TOOL_CONFIG") or None,

        # Read tracking
        read_tracker_ttl_seconds=float(os.getenv("READ_TRACKER_TTL_SECONDS", "3600")),
        read_tracker_max_operations=int(os.getenv("READ_TRACKER_MAX_OPERATIONS", "1024")),

        # Vector store
        vector_backend=os.getenv("VECTOR_BACKEND", "memory").lower(),
        chroma_host=os.getenv("CHROMA_HOST", "localhost"),
        chroma_port=int(os.getenv("CHROMA_PORT", "8001")),
        chroma_collection=os.getenv("CHROMA_COLLECTION", "workspace_documents"),

        # Server
        mcp_port=int(os.getenv("MCP_PORT", "3000")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


def validate_config(config: Config) -> None:
    """
    Validate configuration values.

    Args:
        config: Configuration to validate

    Raises:
        ValueError: If any configuration value is invalid
    """
    if not 1 <= config.openai_embed_dims <= 3072:
        raise ValueError(
            f"Invalid OPENAI_EMBED_DIMS: {config.openai_embed_dims}. "
            "Must be between 1 and 3072"
        )

    if config.operation_timeout_ms <= 0:
        raise ValueError(
            f"WORKSPACE_OPERATION_TIMEOUT_MS ({config.operation_timeout_ms}) must be positive"
        )

    if config.max_file_size_mb <= 0:
        raise ValueError(
            f"WORKSPACE_MAX_FILE_SIZE_MB ({config.max_file_size_mb}) must be positive"
        )

    if config.read_tracker_max_operations < 1:
        raise ValueError(
            f"READ_TRACKER_MAX_OPERATIONS ({config.read_tracker_max_operations}) must be at least 1"
        )

    if config.vector_backend not in VECTOR_BACKENDS:
        raise ValueError(
            f"Invalid VECTOR_BACKEND: {config.vector_backend}. "
            f"Must be one of: {', '.join(VECTOR_BACKENDS)}"
        )

    if config.tool_config_path and not os.path.isfile(config.tool_config_path):
        raise ValueError(
            f"WORKSPACE_TOOL_CONFIG file not found: {config.tool_config_path}"
        )

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: {config.log_level}. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )
