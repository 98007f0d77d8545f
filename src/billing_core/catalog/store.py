"""Versioned holder for the current catalog snapshot."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Iterable

import structlog

from billing_core.catalog.models import CostOverride, ProviderCost
from billing_core.catalog.snapshot import CatalogSnapshot, validate_catalog
from billing_core.core.exceptions import ConfigurationError, RecordNotFoundError, StorageError

logger = structlog.get_logger(__name__)

CatalogLoader = Callable[[], Awaitable[CatalogSnapshot]]
CostOverrideSource = Callable[[], Awaitable[Iterable[CostOverride]]]


class CatalogStore:
    """Serves immutable :class:`CatalogSnapshot` objects to the resolvers.

    Readers call :meth:`snapshot` and keep the returned object for the
    duration of a request. Writers never mutate a published snapshot: every
    change installs a new one with the next ``version``.

    Args:
        snapshot: Initial snapshot (an empty catalog with default tax and
            currency tables when omitted).
        loader: Optional async callable returning a fresh snapshot, used by
            :meth:`refresh` and :meth:`refresh_if_stale`.
        refresh_interval: Seconds after which the snapshot counts as stale.
        strict: Reject snapshots with validation issues instead of
            publishing them with a warning.
        cost_overrides: Optional async callable returning approved costs.
            They are laid over every snapshot the loader returns, so a
            reload never undoes an approved price change.

    Example::

        store = CatalogStore(loader=lambda: load_catalog_file("catalog.json"))
        await store.refresh()
        decision = select_provider(store.snapshot(), "kyb_verification")
    """

    def __init__(
        self,
        snapshot: CatalogSnapshot | None = None,
        *,
        loader: CatalogLoader | None = None,
        refresh_interval: float = 300.0,
        strict: bool = True,
        cost_overrides: CostOverrideSource | None = None,
    ) -> None:
        self._snapshot = snapshot or CatalogSnapshot()
        self._loader = loader
        self._refresh_interval = refresh_interval
        self._strict = strict
        self._cost_overrides = cost_overrides
        self._lock = asyncio.Lock()
        self._refreshed_at = time.monotonic()

    def use_cost_overrides(self, source: CostOverrideSource) -> None:
        self._cost_overrides = source

    def snapshot(self) -> CatalogSnapshot:
        """Return the current snapshot."""
        return self._snapshot

    @property
    def version(self) -> int:
        return self._snapshot.version

    @property
    def is_stale(self) -> bool:
        return time.monotonic() - self._refreshed_at >= self._refresh_interval

    def _install(self, snapshot: CatalogSnapshot) -> CatalogSnapshot:
        installed = snapshot.model_copy(
            update={
                "version": self._snapshot.version + 1,
                "loaded_at": datetime.now(timezone.utc),
            }
        )
        self._snapshot = installed
        return installed

    async def publish(
        self,
        snapshot: CatalogSnapshot,
        *,
        strict: bool | None = None,
    ) -> CatalogSnapshot:
        """Validate *snapshot* and make it current.

        Raises:
            ConfigurationError: If validation finds issues and the store
                (or this call) is strict. The current snapshot is kept.
        """
        enforce = self._strict if strict is None else strict
        issues = validate_catalog(snapshot)
        if issues and enforce:
            raise ConfigurationError(
                f"Catalog rejected with {len(issues)} issue(s)",
                code="CATALOG_INVALID",
                details={"issues": issues},
            )
        async with self._lock:
            installed = self._install(snapshot)
            self._refreshed_at = time.monotonic()
        if issues:
            logger.warning("catalog_published_with_issues", version=installed.version, issues=issues)
        else:
            logger.info("catalog_published", version=installed.version)
        return installed

    async def _overlay(self, snapshot: CatalogSnapshot) -> tuple[CatalogSnapshot, int]:
        if self._cost_overrides is None:
            return snapshot, 0
        applied = 0
        for override in await self._cost_overrides():
            record = snapshot.provider_cost(override.cost_id)
            if record is None:
                logger.warning("cost_override_orphaned", cost_id=override.cost_id)
                continue
            updated = override.apply_to(record)
            if updated != record:
                snapshot = snapshot.with_provider_cost(updated)
                applied += 1
        return snapshot, applied

    async def refresh(self) -> CatalogSnapshot:
        """Reload through the configured loader and publish the result.

        Approved cost overrides are applied to the loaded snapshot first.
        """
        if self._loader is None:
            raise ConfigurationError("CatalogStore has no loader configured")
        snapshot, applied = await self._overlay(await self._loader())
        if applied:
            logger.info("cost_overrides_applied", count=applied)
        return await self.publish(snapshot)

    async def apply_cost_overrides(self) -> CatalogSnapshot:
        """Lay approved costs over the current snapshot.

        A new version is installed only when at least one cost changes.
        """
        async with self._lock:
            snapshot, applied = await self._overlay(self._snapshot)
            if applied:
                self._install(snapshot)
        if applied:
            logger.info("cost_overrides_applied", count=applied, version=self._snapshot.version)
        return self._snapshot

    async def refresh_if_stale(self) -> CatalogSnapshot:
        """Refresh when older than ``refresh_interval``.

        A failed refresh keeps serving the previous snapshot; the failure is
        logged and retried on the next call.
        """
        if self._loader is None or not self.is_stale:
            return self._snapshot
        try:
            return await self.refresh()
        except (ConfigurationError, StorageError, OSError, ValueError):
            logger.exception("catalog_refresh_failed", version=self._snapshot.version)
            return self._snapshot

    # -- provider cost edits --------------------------------------------------

    async def update_provider_cost(
        self,
        cost_id: str,
        *,
        cost_per_unit: Decimal,
        effective_from: datetime,
    ) -> ProviderCost:
        """Install a snapshot with a new unit cost; return the previous record.

        Raises:
            RecordNotFoundError: If no cost record has *cost_id*.
        """
        async with self._lock:
            previous = self._snapshot.provider_cost(cost_id)
            if previous is None:
                raise RecordNotFoundError(
                    f"Provider cost '{cost_id}' not found",
                    code="COST_NOT_FOUND",
                    details={"provider_service_cost_id": cost_id},
                )
            updated = previous.model_copy(
                update={"cost_per_unit": cost_per_unit, "effective_from": effective_from}
            )
            installed = self._install(self._snapshot.with_provider_cost(updated))
        logger.info(
            "provider_cost_updated",
            cost_id=cost_id,
            previous=str(previous.cost_per_unit),
            current=str(cost_per_unit),
            version=installed.version,
        )
        return previous

    async def restore_provider_cost(self, record: ProviderCost) -> None:
        """Put *record* back verbatim; compensating action for a failed approval."""
        async with self._lock:
            installed = self._install(self._snapshot.with_provider_cost(record))
        logger.warning(
            "provider_cost_restored",
            cost_id=record.id,
            cost_per_unit=str(record.cost_per_unit),
            version=installed.version,
        )
