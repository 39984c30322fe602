"""Configuration management for RECONMESH.

Loads configuration from a YAML file with support for environment variable
overrides, and exposes the scope and API-key lookups every data source
consults from inside its dispatch loop.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, PrivateAttr

from reconmesh.core.errors import ConfigError
from reconmesh.core.scope import ScopeManager
from reconmesh.utils.http_client import DEFAULT_USER_AGENTS


class GeneralConfig(BaseModel):
    """General runtime configuration."""

    timeout: float = 10.0
    retries: int = 0
    user_agents: List[str] = Field(default_factory=lambda: list(DEFAULT_USER_AGENTS))
    proxy: Optional[str] = None
    stop_grace: float = 1.0
    queue_size: int = 1000


class EnumerationConfig(BaseModel):
    """Targets and pacing of a single enumeration run."""

    domains: List[str] = Field(default_factory=list)
    blacklist: List[str] = Field(default_factory=list)
    addresses: List[str] = Field(default_factory=list)
    cidrs: List[str] = Field(default_factory=list)
    resolve_names: bool = True
    idle_window: float = 10.0
    max_duration: float = 600.0


class DNSConfig(BaseModel):
    """DNS resolver pool configuration."""

    resolvers: List[str] = ["8.8.8.8", "8.8.4.4", "1.1.1.1"]
    timeout: int = 5
    max_queries: int = 100


class CrawlerConfig(BaseModel):
    """Archive crawler limits."""

    max_concurrent: int = 50
    timeout: float = 20.0
    max_visits: int = 50
    request_delay: float = 1.0


class APIKey(BaseModel):
    """Credentials for a single data source."""

    username: str = ""
    password: str = ""
    key: str = ""
    secret: str = ""


class Config(BaseModel):
    """Top-level RECONMESH configuration."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    enumeration: EnumerationConfig = Field(default_factory=EnumerationConfig)
    dns: DNSConfig = Field(default_factory=DNSConfig)
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    api_keys: Dict[str, APIKey] = Field(default_factory=dict)
    rate_limits: Dict[str, float] = Field(default_factory=dict)
    disabled_sources: List[str] = Field(default_factory=list)

    _scope: ScopeManager = PrivateAttr(default_factory=ScopeManager)

    def model_post_init(self, __context: Any) -> None:
        self.api_keys = {k.strip().lower(): v for k, v in self.api_keys.items()}
        self.rate_limits = {k.strip().lower(): v for k, v in self.rate_limits.items()}
        for domain in self.enumeration.domains:
            self._scope.add_domain(domain)
        for name in self.enumeration.blacklist:
            self._scope.add_blacklist(name)
        for target in [*self.enumeration.addresses, *self.enumeration.cidrs]:
            try:
                self._scope.add_address(target)
            except ValueError as exc:
                raise ConfigError(f"Invalid address scope entry {target!r}") from exc

    # ------------------------------------------------------------------
    # Scope
    # ------------------------------------------------------------------

    @property
    def scope(self) -> ScopeManager:
        """The :class:`ScopeManager` backing the scope queries below."""
        return self._scope

    def add_domain(self, domain: str) -> None:
        """Add *domain* to the enumeration scope."""
        if self._scope.add_domain(domain):
            d = domain.strip().lower().rstrip(".")
            if d not in self.enumeration.domains:
                self.enumeration.domains.append(d)

    def add_domains(self, domains: List[str]) -> None:
        """Add every domain in *domains* to the enumeration scope."""
        for domain in domains:
            self.add_domain(domain)

    @property
    def domains(self) -> List[str]:
        """Root domains currently in scope."""
        return self._scope.domains

    def domain_regex(self, domain: str) -> Optional[re.Pattern[str]]:
        """Return the subdomain regex for *domain*, or ``None`` if out of scope."""
        return self._scope.domain_regex(domain)

    def is_domain_in_scope(self, name: str) -> bool:
        """Return ``True`` if *name* lies under an in-scope root domain."""
        return self._scope.is_domain_in_scope(name)

    def which_domain(self, name: str) -> str:
        """Return the in-scope root domain of *name*, or ``""``."""
        return self._scope.which_domain(name)

    def is_address_in_scope(self, address: str) -> bool:
        """Return ``True`` if *address* matches the address scope."""
        return self._scope.is_address_in_scope(address)

    def blacklisted(self, name: str) -> bool:
        """Return ``True`` if *name* is blacklisted."""
        return self._scope.blacklisted(name)

    # ------------------------------------------------------------------
    # Data sources
    # ------------------------------------------------------------------

    def add_api_key(self, source: str, api_key: APIKey) -> None:
        """Associate *api_key* with the data source *source*."""
        idx = source.strip().lower()
        if idx:
            self.api_keys[idx] = api_key

    def get_api_key(self, source: str) -> Optional[APIKey]:
        """Return the API key configured for *source*, or ``None``."""
        return self.api_keys.get(source.strip().lower())

    def rate_limit_for(self, source: str, default: float) -> float:
        """Return the configured rate limit override for *source*, else *default*."""
        return self.rate_limits.get(source.strip().lower(), default)

    def source_disabled(self, source: str) -> bool:
        """Return ``True`` if *source* is listed in ``disabled_sources``."""
        name = source.strip().lower()
        return any(name == d.strip().lower() for d in self.disabled_sources)


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from a YAML file, applying environment variable overrides.

    Args:
        config_path: Optional path to a YAML configuration file. Defaults to
                     ``config.yaml`` in the current working directory.

    Returns:
        Populated :class:`Config` instance.

    Raises:
        ConfigError: If the file is not valid YAML or not a mapping.
    """
    path = Path(config_path) if config_path else Path("config.yaml")

    raw: Dict[str, Any] = {}
    if path.exists():
        with path.open("r") as fh:
            try:
                raw = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"Configuration root in {path} must be a mapping")

    # Environment variable overrides (RECONMESH__SECTION__KEY=value)
    _apply_env_overrides(raw)

    return Config(**raw)


def _apply_env_overrides(raw: Dict[str, Any]) -> None:
    """Mutate *raw* in-place with values from environment variables.

    Environment variables follow the pattern ``RECONMESH__<SECTION>__<KEY>``.
    For example ``RECONMESH__GENERAL__TIMEOUT=30``.
    """
    prefix = "RECONMESH__"
    for env_key, env_val in os.environ.items():
        if not env_key.startswith(prefix):
            continue
        parts = env_key[len(prefix):].lower().split("__")
        if len(parts) == 2:
            section, key = parts
            raw.setdefault(section, {})[key] = env_val
