"""
Credential Lookup
=================

Retrieves provider API keys from HashiCorp Vault (KV v2) with a
fallback to environment variables.

Secrets are read from:
- secret/data/tradepilot/config/{provider} -> {"api_key": "..."}

Vault is optional. When VAULT_ADDR is not configured, or Vault is
unreachable, lookups go straight to the environment. Lookup failures
are logged and never raised: a missing key simply means the provider
is unavailable.
"""

import logging
import os
from typing import Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)

SECRETS_PATH = "secret/data/tradepilot"  # KV v2 secrets engine

# Map provider names to environment variable names
ENV_VAR_MAP: Dict[str, str] = {
    "twelvedata": "TWELVEDATA_API_KEY",
    "polygon": "POLYGON_API_KEY",
    "finnhub": "FINNHUB_API_KEY",
    "alpha_vantage": "ALPHA_VANTAGE_API_KEY",
    # LLM Providers
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "groq": "GROQ_API_KEY",
}


class CredentialStore:
    """
    Async credential lookup with Vault first, environment second.

    One store is created per process by the engine factory and handed
    to whichever component needs a key; results are memoized on the
    instance.

    Example Usage:
        store = CredentialStore(vault_addr="http://localhost:8200", vault_token="...")
        key = await store.get("polygon")
        await store.close()
    """

    def __init__(
        self,
        vault_addr: Optional[str] = None,
        vault_token: Optional[str] = None,
        overrides: Optional[Dict[str, Optional[str]]] = None,
        timeout: int = 5,
    ):
        """
        Args:
            vault_addr: Vault server address; Vault is skipped when empty
            vault_token: Vault authentication token
            overrides: Explicit keys (e.g. from Config) that win over both sources
            timeout: Vault request timeout in seconds
        """
        self.vault_addr = vault_addr
        self.vault_token = vault_token
        self.timeout = timeout
        self._overrides = {k: v for k, v in (overrides or {}).items() if v}
        self._cache: Dict[str, Optional[str]] = {}
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create an aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"X-Vault-Token": self.vault_token or ""},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _get_from_vault(self, provider: str) -> Optional[str]:
        if not self.vault_addr:
            return None

        url = f"{self.vault_addr}/v1/{SECRETS_PATH}/config/{provider}"
        session = await self._get_session()

        try:
            async with session.get(url) as response:
                if response.status == 200:
                    result = await response.json()
                    # KV v2 returns data nested under data.data
                    secret = result.get("data", {}).get("data") or {}
                    return secret.get("api_key")
                elif response.status == 404:
                    logger.debug(f"Secret '{provider}' not found in Vault")
                else:
                    logger.warning(f"Vault returned {response.status} for '{provider}'")
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.warning(f"Could not retrieve {provider} API key from Vault: {e}")
        return None

    async def get(self, provider: str) -> Optional[str]:
        """
        Get an API key for a provider.

        Args:
            provider: Provider name (e.g., 'polygon', 'twelvedata', 'openai')

        Returns:
            API key string, or None if not found in any source
        """
        if provider in self._overrides:
            return self._overrides[provider]
        if provider in self._cache:
            return self._cache[provider]

        api_key = await self._get_from_vault(provider)
        if api_key:
            logger.debug(f"Retrieved {provider} API key from Vault")
        else:
            env_var = ENV_VAR_MAP.get(provider, f"{provider.upper()}_API_KEY")
            api_key = os.getenv(env_var)
            if api_key:
                logger.debug(f"Using {provider} API key from environment variable {env_var}")

        self._cache[provider] = api_key
        return api_key

    async def has(self, provider: str) -> bool:
        return bool(await self.get(provider))
