"""Credential store facade.

Routes every request to the OS credential manager first and degrades to the
encrypted file cache when the native path fails. Nothing is remembered
between calls: each call tries native again.
"""

from __future__ import annotations

import logging
import pathlib

from keyvault.attempts import (
    Attempt,
    Failed,
    NativeFailed,
    attempt_fallback,
    attempt_native,
    resolve_read,
    resolve_write,
)
from keyvault.config import Settings, StoreConfig
from keyvault.secrets import NativeBackend, create_native_backend
from keyvault.secrets.encrypted_file import AuthenticatedCacheStore

logger = logging.getLogger(__name__)


class CredentialStore:
    """Save, look up and delete account secrets for one service.

    Parameters
    ----------
    service:
        Namespace for the credentials (e.g. an application name).
    fallback:
        When True, bypass the OS credential manager and use only the
        encrypted file cache.
    config:
        Full per-service configuration. Overrides *service*/*fallback* when
        given; its ``service`` must match.
    native:
        Native backend to use instead of the platform default.
    cache:
        Encrypted file store to use instead of one built from *config*.
    """

    def __init__(
        self,
        service: str,
        *,
        fallback: bool = False,
        config: StoreConfig | None = None,
        native: NativeBackend | None = None,
        cache: AuthenticatedCacheStore | None = None,
    ) -> None:
        if config is None:
            config = StoreConfig(service=service, force_fallback=fallback)
        elif config.service != service:
            raise ValueError(
                f"config is for service {config.service!r}, not {service!r}"
            )
        self._config = config
        self._native = native if native is not None else create_native_backend(config)
        self._cache = cache if cache is not None else AuthenticatedCacheStore(config)

    @classmethod
    def from_settings(
        cls,
        service: str,
        settings: Settings,
        fallback: bool | None = None,
    ) -> CredentialStore:
        """Build a store from loaded ``Settings`` (see ``keyvault.config.load_settings``)."""
        config = StoreConfig.from_settings(service, settings, force_fallback=fallback)
        return cls(service, config=config)

    @property
    def service(self) -> str:
        return self._config.service

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def is_fallback_forced(self) -> bool:
        return self._config.force_fallback

    @property
    def cache_dir(self) -> pathlib.Path:
        return self._cache.cache_dir

    def _warn_fallback(self, action: str, attempt: NativeFailed) -> None:
        logger.warning(
            "Native credential %s failed for service %r, using encrypted file fallback: %s",
            action,
            self.service,
            attempt.reason,
        )

    def save(self, account: str, secret: str) -> None:
        """Store *secret* for *account*, overwriting any previous value.

        Raises the fallback store's error if both paths fail.
        """
        if self.is_fallback_forced:
            self._cache.put(account, secret)
            return
        native = attempt_native(self._native.save, account, secret)
        fallback: Attempt | None = None
        if isinstance(native, NativeFailed):
            self._warn_fallback("storage", native)
            fallback = attempt_fallback(self._cache.put, account, secret)
        resolve_write(native, fallback)

    def get(self, account: str) -> str | None:
        """Return the secret for *account*, or None if none can be found.

        A native miss still checks the encrypted file cache when one exists,
        since an earlier save may have fallen back to it. Never raises for
        backend failures: the worst case is None.
        """
        if self.is_fallback_forced:
            return resolve_read(None, attempt_fallback(self._cache.get, account))
        native = attempt_native(self._native.get, account)
        fallback: Attempt | None = None
        if isinstance(native, NativeFailed):
            self._warn_fallback("retrieval", native)
            fallback = attempt_fallback(self._cache.get, account)
        elif native.value is None and self._cache.cache_file.exists():
            logger.debug("Native lookup missed %r, checking encrypted file cache", account)
            fallback = attempt_fallback(self._cache.get, account)
        return resolve_read(native, fallback)

    def delete(self, account: str) -> None:
        """Remove *account*. Deleting a missing account is not an error.

        A successful native delete also drops any copy left in the encrypted
        file cache by an earlier fallback save.
        """
        if self.is_fallback_forced:
            self._cache.delete(account)
            return
        native = attempt_native(self._native.delete, account)
        fallback: Attempt | None = None
        if isinstance(native, NativeFailed):
            self._warn_fallback("deletion", native)
            fallback = attempt_fallback(self._cache.delete, account)
        elif self._cache.cache_file.exists():
            purge = attempt_fallback(self._cache.delete, account)
            if isinstance(purge, Failed):
                logger.warning(
                    "Could not remove cached copy of %r for service %r: %s",
                    account,
                    self.service,
                    purge.error,
                )
        resolve_write(native, fallback)
