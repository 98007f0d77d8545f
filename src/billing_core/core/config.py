from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from billing_core.resilience.retry import RetryPolicy


class BillingConfig(BaseModel):
    database: str = ":memory:"
    """``":memory:"`` selects the in-memory ledger store; anything else is a SQLite path."""
    catalog_path: Path | None = None
    refresh_interval_seconds: float = Field(default=300.0, gt=0)
    seller_country_code: str | None = Field(default=None, min_length=2, max_length=2)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = True
    setup_logging: bool = True
    """Apply ``log_level`` and ``log_json`` when :meth:`BillingEngine.create` runs."""
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)

    @classmethod
    def from_env(cls) -> BillingConfig:
        """Create a :class:`BillingConfig` from ``BILLING_CORE_*`` environment variables.

        Reads the following env vars (all optional):

        * ``BILLING_CORE_DATABASE`` → ``database``
        * ``BILLING_CORE_CATALOG_PATH`` → ``catalog_path``
        * ``BILLING_CORE_REFRESH_SECONDS`` → ``refresh_interval_seconds``
        * ``BILLING_CORE_SELLER_COUNTRY`` → ``seller_country_code``
        * ``BILLING_CORE_LOG_LEVEL`` → ``log_level``
        * ``BILLING_CORE_LOG_JSON`` → ``log_json`` (``0``/``false`` disables)
        * ``BILLING_CORE_MAX_RETRIES`` → ``retry_policy.max_retries``

        Any variable that is not set or is empty is left at its default value.
        """
        kwargs: dict[str, Any] = {}

        database = os.environ.get("BILLING_CORE_DATABASE")
        if database:
            kwargs["database"] = database

        catalog_path = os.environ.get("BILLING_CORE_CATALOG_PATH")
        if catalog_path:
            kwargs["catalog_path"] = Path(catalog_path)

        refresh = os.environ.get("BILLING_CORE_REFRESH_SECONDS")
        if refresh:
            kwargs["refresh_interval_seconds"] = float(refresh)

        seller_country = os.environ.get("BILLING_CORE_SELLER_COUNTRY")
        if seller_country:
            kwargs["seller_country_code"] = seller_country.upper()

        log_level = os.environ.get("BILLING_CORE_LOG_LEVEL")
        if log_level:
            kwargs["log_level"] = log_level.upper()

        log_json = os.environ.get("BILLING_CORE_LOG_JSON")
        if log_json:
            kwargs["log_json"] = log_json.strip().lower() not in ("0", "false", "no")

        max_retries = os.environ.get("BILLING_CORE_MAX_RETRIES")
        if max_retries:
            kwargs["retry_policy"] = RetryPolicy(max_retries=int(max_retries))

        return cls(**kwargs)

    @property
    def uses_memory_store(self) -> bool:
        return self.database == ":memory:"
