"""Configuration system for Sona Wallet.

Loads the deployment config from `.sona-wallet/config.yaml` and supports
environment variable expansion. The asset whitelist and the chain endpoint are
fixed here at deployment time; nothing negotiates them at runtime.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, model_validator


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class LLMProviderConfig(BaseModel):
    """Configuration for a single LLM provider (Anthropic, OpenAI, etc.)."""

    api_key: str = ""
    model: str = ""
    base_url: Optional[str] = None  # For OpenAI-compatible endpoints
    max_tokens: int = 1000


class LLMConfig(BaseModel):
    """LLM settings for the intent classification service."""

    default_provider: str = "openai"
    anthropic: Optional[LLMProviderConfig] = None
    openai: Optional[LLMProviderConfig] = None


Commitment = Literal["processed", "confirmed", "finalized"]


class ChainConfig(BaseModel):
    """Solana RPC endpoint settings."""

    rpc_url: str = "https://api.testnet.solana.com"
    commitment: Commitment = "confirmed"
    explorer_url: str = "https://explorer.solana.com"
    cluster: str = "testnet"  # appended as ?cluster=... to explorer links
    request_timeout: float = 30.0


class AssetConfig(BaseModel):
    """A whitelisted asset. ``mint`` is ``None`` for the native asset."""

    symbol: str
    decimals: int = 9
    mint: Optional[str] = None


def _default_assets() -> list[AssetConfig]:
    return [
        AssetConfig(symbol="SOL", decimals=9),
        AssetConfig(
            symbol="SONIC",
            decimals=9,
            mint="7rh23QToLTBmYxR5jDiRbUtqcGey4xjDeU9JmtX6QChe",
        ),
    ]


class WalletConfig(BaseModel):
    """Wallet state store settings."""

    refresh_interval_seconds: float = 30.0
    history_capacity: int = 10


class ConfirmationConfig(BaseModel):
    """Broadcast & confirmation settings."""

    commitment: Commitment = "confirmed"
    poll_interval_seconds: float = 2.0
    timeout_seconds: float = 60.0


class RetryConfig(BaseModel):
    """Retry policy for the transaction builder stage."""

    builder_max_attempts: int = 2   # the first try plus one retry
    backoff_seconds: list[float] = Field(default_factory=lambda: [0.5])


class SignerConfig(BaseModel):
    """Which external signer the session talks to."""

    kind: Literal["none", "keypair", "http"] = "none"
    keypair_path: str = ""   # Solana CLI keypair JSON (devnet / testing only)
    url: str = ""            # wallet bridge base URL for kind=http
    timeout: float = 120.0   # the user has to approve in their wallet


class ServerConfig(BaseModel):
    """HTTP API settings."""

    port: int = 8420
    host: str = "127.0.0.1"


class AppConfig(BaseModel):
    """Root configuration object."""

    name: str = "Sona"
    chain: ChainConfig = Field(default_factory=ChainConfig)
    assets: list[AssetConfig] = Field(default_factory=_default_assets)
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    confirmation: ConfirmationConfig = Field(default_factory=ConfirmationConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    signer: SignerConfig = Field(default_factory=SignerConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @model_validator(mode="after")
    def _check_assets(self) -> "AppConfig":
        natives = [a for a in self.assets if a.mint is None]
        if len(natives) != 1:
            raise ValueError("Exactly one native asset (without a mint) must be configured.")
        symbols = [a.symbol.upper() for a in self.assets]
        if len(set(symbols)) != len(symbols):
            raise ValueError(f"Duplicate asset symbols in configuration: {symbols}")
        return self


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def get_root_dir(base: Path | None = None, *, create: bool = False) -> Path:
    """Return the ``.sona-wallet/`` root directory.

    Parameters
    ----------
    base:
        Parent directory that contains (or will contain) the root folder.
        Defaults to the current working directory.
    create:
        If *True*, create the directory if it doesn't exist.
    """
    if base is None:
        base = Path.cwd()
    root = base / ".sona-wallet"
    if create:
        root.mkdir(parents=True, exist_ok=True)
    return root


def load_config(path: Path) -> AppConfig:
    """Load and validate the configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation.
    """
    raw_text = path.read_text(encoding="utf-8")
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _expand_env_recursive(raw_data)
    return AppConfig.model_validate(expanded)


def save_config(config: AppConfig, path: Path) -> None:
    """Serialize an :class:`AppConfig` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="python", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
