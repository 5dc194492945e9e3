from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError, StoreError

logger = logging.getLogger(__name__)


class TablestoreSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TABLE_STORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    endpoint: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    instance_name: str | None = None
    sts_token: str | None = None
    socket_timeout: float = Field(default=50.0, gt=0)
    max_connection: int = Field(default=50, gt=0)

    def missing(self) -> list[str]:
        required = ("endpoint", "access_key_id", "secret_access_key", "instance_name")
        return [f"TABLE_STORE_{name.upper()}" for name in required if not getattr(self, name)]


@dataclass(frozen=True)
class StoreCallMetric:
    operation: str
    duration_ms: float
    error_code: str | None = None


class _InstrumentedClient:
    def __init__(self, client: Any, on_call: Callable[[StoreCallMetric], None]) -> None:
        self._client = client
        self._on_call = on_call

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._client, name)
        if name.startswith("_") or not callable(attr):
            return attr

        def wrapped(*args: Any, **kwargs: Any) -> Any:
            start = time.monotonic()
            try:
                out = attr(*args, **kwargs)
            except StoreError as err:
                self._emit(name, start, err.code)
                raise
            except Exception as err:
                self._emit(name, start, type(err).__name__)
                raise

            self._emit(name, start, None)
            return out

        return wrapped

    def _emit(self, operation: str, start: float, error_code: str | None) -> None:
        self._on_call(
            StoreCallMetric(
                operation=operation,
                duration_ms=(time.monotonic() - start) * 1000.0,
                error_code=error_code,
            )
        )


def instrument_client(client: Any, *, on_call: Callable[[StoreCallMetric], None]) -> Any:
    return _InstrumentedClient(client, on_call)


def _default_client_factory(settings: TablestoreSettings) -> Any:
    import tablestore

    from .client import TablestoreClient

    ots_client = tablestore.OTSClient(
        settings.endpoint,
        settings.access_key_id,
        settings.secret_access_key,
        settings.instance_name,
        sts_token=settings.sts_token,
        socket_timeout=settings.socket_timeout,
        max_connection=settings.max_connection,
    )
    return TablestoreClient(ots_client)


class Connection:
    def __init__(
        self,
        settings: TablestoreSettings | None = None,
        *,
        client_factory: Callable[[TablestoreSettings], Any] | None = None,
        metric_hook: Callable[[StoreCallMetric], None] | None = None,
    ) -> None:
        self._settings = settings
        self._client_factory = client_factory or _default_client_factory
        self._metric_hook = metric_hook
        self._client: Any | None = None

    @property
    def settings(self) -> TablestoreSettings:
        if self._settings is None:
            self._settings = TablestoreSettings()
        return self._settings

    @property
    def client(self) -> Any:
        if self._client is not None:
            return self._client

        settings = self.settings
        missing = settings.missing()
        if missing:
            raise ConfigurationError(f"missing Tablestore settings: {', '.join(missing)}")

        logger.debug("creating Tablestore client for %s/%s", settings.endpoint, settings.instance_name)
        client = self._client_factory(settings)
        if self._metric_hook is not None:
            client = instrument_client(client, on_call=self._metric_hook)
        self._client = client
        return client

    def reset(self) -> None:
        self._client = None
