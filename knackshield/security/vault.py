"""HashiCorp Vault integration for gate credentials.

Provides:
- Secret retrieval from Vault's KV v2 engine
- Fallback to environment variables when Vault is unreachable
- A caching secret manager used to resolve the request gate's API keys
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import hvac

logger = logging.getLogger(__name__)


class SecretNotFoundError(Exception):
    """Raised when a secret is not found."""

    pass


@dataclass
class VaultConfig:
    """Configuration for Vault client."""

    url: str = "http://localhost:8200"
    token: Optional[str] = None
    namespace: Optional[str] = None
    verify_ssl: bool = True
    mount_point: str = "secret"

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create config from environment variables."""
        return cls(
            url=os.getenv("VAULT_ADDR", "http://localhost:8200"),
            token=os.getenv("VAULT_TOKEN"),
            namespace=os.getenv("VAULT_NAMESPACE"),
        )


class VaultClient:
    """Client for HashiCorp Vault.

    If Vault is not available, falls back to environment variables.
    """

    def __init__(self, config: Optional[VaultConfig] = None):
        """Initialize Vault client.

        Args:
            config: Vault configuration
        """
        self.config = config or VaultConfig.from_env()
        self._hvac_client: Optional[hvac.Client] = None
        self._fallback_mode = False

        self._initialize_client()

    def _initialize_client(self) -> None:
        try:
            self._hvac_client = hvac.Client(
                url=self.config.url,
                token=self.config.token,
                namespace=self.config.namespace,
                verify=self.config.verify_ssl,
            )
            if self._hvac_client.is_authenticated():
                logger.info("Connected to Vault")
            else:
                logger.warning("Vault token is not authenticated, falling back to env vars")
                self._fallback_mode = True
        except Exception as e:
            logger.warning(f"Failed to connect to Vault: {e}, using environment variables")
            self._fallback_mode = True

    def read_secret(self, path: str) -> Dict[str, Any]:
        """Read a secret.

        Args:
            path: Secret path (e.g., "api_keys/admin")

        Returns:
            Secret data dictionary

        Raises:
            SecretNotFoundError: If the secret exists in neither Vault nor the environment
        """
        if self._fallback_mode:
            return self._read_from_env(path)

        try:
            result = self._hvac_client.secrets.kv.v2.read_secret_version(
                path=path,
                mount_point=self.config.mount_point,
            )
            return result.get("data", {}).get("data", {})
        except Exception as e:
            logger.error(f"Failed to read secret {path}: {e}")
            return self._read_from_env(path)

    def _read_from_env(self, path: str) -> Dict[str, Any]:
        """Read a secret from environment variables.

        "api_keys/admin" is looked up as API_KEYS_ADMIN, then API_KEY_ADMIN.
        """
        env_key = path.upper().replace("/", "_")
        value = os.getenv(env_key)
        if value:
            return {"key": value}

        if path.startswith("api_keys/"):
            name = path.split("/", 1)[1].upper()
            value = os.getenv(f"API_KEY_{name}")
            if value:
                return {"key": value}

        raise SecretNotFoundError(f"Secret not found: {path}")

    @property
    def is_fallback_mode(self) -> bool:
        """Check if using fallback mode."""
        return self._fallback_mode


class SecretManager:
    """High-level secret manager with caching.

    Usage:
        manager = SecretManager()
        admin_key = manager.get_api_key("admin")
    """

    def __init__(self, vault_client: Optional[VaultClient] = None):
        self._vault = vault_client or VaultClient()
        self._cache: Dict[str, Dict[str, Any]] = {}

    def get_secret(self, path: str, use_cache: bool = True) -> Dict[str, Any]:
        """Get a secret, served from the local cache when possible."""
        if use_cache and path in self._cache:
            return self._cache[path]

        secret = self._vault.read_secret(path)
        self._cache[path] = secret
        return secret

    def get_api_key(self, name: str) -> Optional[str]:
        """Get an API key by name, or None when it is not configured."""
        try:
            return self.get_secret(f"api_keys/{name}").get("key")
        except SecretNotFoundError:
            return None

    def clear_cache(self) -> None:
        """Clear the secret cache, forcing rotated keys to be re-read."""
        self._cache.clear()
