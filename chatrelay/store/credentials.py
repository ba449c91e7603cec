from __future__ import annotations

import os
from typing import Mapping

from chatrelay.config import ChatRelayConfig
from chatrelay.store.base import CredentialProvider


class ConfigCredentials(CredentialProvider):
    """
    Resolve keys from configuration and the environment.

    A user's personal key wins; otherwise the default upstream key (read from
    the env var named by ``llm.api_key_env``) is used when
    ``credentials.allow_default_key`` is set.
    """

    def __init__(
        self, config: ChatRelayConfig, environ: Mapping[str, str] | None = None
    ) -> None:
        self._config = config
        self._environ = os.environ if environ is None else environ

    def get_api_credential(self, user_id: str) -> str | None:
        personal = self._config.credentials.user_keys.get(user_id)
        if personal:
            return personal
        if not self._config.credentials.allow_default_key:
            return None
        return self._environ.get(self._config.llm.api_key_env) or None

    def get_search_credential(self) -> str | None:
        return self._environ.get(self._config.credentials.search_api_key_env) or None

    def uses_default_credential(self, user_id: str) -> bool:
        if self._config.credentials.user_keys.get(user_id):
            return False
        return self.get_api_credential(user_id) is not None
