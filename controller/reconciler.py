"""
Reconciliation driver - one sync cycle per trigger.

A cycle resolves the referenced store, builds a backend client, merges the
fetched data into the target Secret, upserts it and records the outcome as
the ExternalSecret's Ready condition.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import partial
from typing import Callable, Optional

from controller.locks import KeyedLock
from controller.merge import MergeEngine
from controller.objectstore import SECRET_KIND, ObjectStore
from core.config.exceptions import ConfigError, StoreNotFoundError
from core.scheduler.scheduler import Scheduler
from core.schema.store import CLUSTER_SECRET_STORE_KIND, StoreConfig
from core.schema.sync_request import (
    CONDITION_READY,
    EPOCH,
    EXTERNAL_SECRET_KIND,
    Condition,
    SyncRequest,
    SyncStatus,
    format_time,
)
from core.secrets.exceptions import SecretSyncError, UpsertError
from core.secrets.resolver import StoreResolver
from core.utils.logging import get_logger
from monitoring.recorders import Metrics, track_time

logger = get_logger(__name__)

TRIGGER_EVENT = "event"
TRIGGER_SCHEDULE = "schedule"

DEFAULT_MIN_REFRESH_INTERVAL = timedelta(seconds=60)
DEFAULT_REQUEUE_AFTER = timedelta(seconds=30)

REASON_AVAILABLE = "Available"
REASON_STORE_NOT_FOUND = "StoreNotFound"
REASON_STORE_SETUP_FAILED = "StoreSetupFailed"
REASON_FETCH_FAILED = "FetchFailed"
REASON_TEMPLATE_FAILED = "TemplateFailed"
REASON_UPSERT_FAILED = "UpsertFailed"

ERR_STORE_NOT_FOUND = "cannot get store reference"
ERR_STORE_SETUP_FAILED = "cannot setup store client"
ERR_FETCH_FAILED = "cannot get ExternalSecret data from store"
ERR_TEMPLATE_FAILED = "failed to merge secret with template field"
ERR_UPSERT_FAILED = "cannot create/update ExternalSecret data from store"


class SyncState(str, Enum):
    IDLE = "Idle"
    SYNCING = "Syncing"
    AVAILABLE = "Available"
    UNAVAILABLE = "Unavailable"


@dataclass
class Result:
    """Outcome of one trigger, as seen by the trigger source."""

    state: SyncState
    requeue_after: Optional[timedelta] = None
    skipped: bool = False


class CycleFailure(Exception):
    """A failed cycle stage: condition reason plus the underlying error."""

    def __init__(self, reason: str, prefix: str, error: Exception):
        self.reason = reason
        self.error = error
        detail = getattr(error, "reason", type(error).__name__)
        super().__init__(f"{prefix}: {detail}: {error}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reconciler:
    """
    Drives sync cycles for ExternalSecrets.

    Usage:
        reconciler = Reconciler(object_store, scheduler)
        result = reconciler.reconcile("team-a", "db-creds")
        if result.requeue_after:
            ...  # retry later
    """

    def __init__(
        self,
        store: ObjectStore,
        scheduler: Optional[Scheduler] = None,
        resolver: Optional[StoreResolver] = None,
        merge_engine: Optional[MergeEngine] = None,
        clock: Callable[[], datetime] = utcnow,
        min_refresh_interval: timedelta = DEFAULT_MIN_REFRESH_INTERVAL,
        requeue_after: timedelta = DEFAULT_REQUEUE_AFTER,
        locks: Optional[KeyedLock] = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.resolver = resolver or StoreResolver(credentials=store)
        self.merge_engine = merge_engine or MergeEngine()
        self.clock = clock
        self.min_refresh_interval = min_refresh_interval
        self.requeue_after = requeue_after
        self.locks = locks or KeyedLock()
        self._states: dict = {}
        self._states_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def should_schedule(self, request: SyncRequest) -> bool:
        """Only intervals of at least a minute get periodic refreshes."""
        return (
            request.refresh_interval is not None
            and request.refresh_interval > timedelta(0)
            and request.refresh_interval >= self.min_refresh_interval
        )

    @staticmethod
    def skip_sync(request: SyncRequest) -> bool:
        """A zero interval means sync once; after that nextSync is set."""
        return (
            request.refresh_interval is not None
            and request.refresh_interval.total_seconds() == 0
            and request.status.next_sync is not None
        )

    def next_sync(self, request: SyncRequest) -> Optional[datetime]:
        if request.refresh_interval is None:
            return None
        if request.refresh_interval.total_seconds() == 0:
            return EPOCH
        return self.clock() + request.refresh_interval

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def state(self, identity: str) -> SyncState:
        with self._states_lock:
            return self._states.get(identity, SyncState.IDLE)

    def _set_state(self, identity: str, state: SyncState) -> None:
        with self._states_lock:
            self._states[identity] = state

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def reconcile(self, namespace: str, name: str) -> Result:
        """
        Handle an external trigger (watch event or requeue) for one request.

        A missing request is treated as deleted and unscheduled. Failed
        cycles return ``requeue_after``.
        """
        identity = f"{namespace}/{name}"
        logger.debug(f"Reconciling ExternalSecret {identity}")

        manifest = self.store.get(EXTERNAL_SECRET_KIND, namespace, name)
        if manifest is None:
            logger.info(f"ExternalSecret {identity} is gone, removing schedule")
            self.forget(namespace, name)
            return Result(state=SyncState.IDLE)

        try:
            request = SyncRequest.from_manifest(manifest)
        except ConfigError as e:
            logger.error(f"Invalid ExternalSecret {identity}: {e}")
            self._set_state(identity, SyncState.UNAVAILABLE)
            Metrics.sync_error(TRIGGER_EVENT, e.reason)
            return Result(state=SyncState.UNAVAILABLE)

        if self.scheduler is not None:
            if self.should_schedule(request):
                self.scheduler.add(
                    identity,
                    request.refresh_interval,
                    partial(self.scheduled_sync, namespace, name),
                )
            else:
                self.scheduler.remove(identity)

        with self.locks.hold(identity):
            # Status as left by a cycle that held the lock before us
            manifest = self.store.get(EXTERNAL_SECRET_KIND, namespace, name)
            if manifest is None:
                return Result(state=SyncState.IDLE)
            request.status = SyncStatus.from_dict(manifest.get("status"))

            if self.skip_sync(request):
                logger.debug(f"Skipping {identity}: one-shot sync already done")
                Metrics.sync_skipped("synced_once")
                return Result(state=self.state(identity), skipped=True)

            synced = self._sync_locked(request, TRIGGER_EVENT)

        if synced:
            return Result(state=SyncState.AVAILABLE)
        return Result(state=SyncState.UNAVAILABLE, requeue_after=self.requeue_after)

    def scheduled_sync(self, namespace: str, name: str) -> None:
        """Scheduler tick: re-read the request and sync it."""
        identity = f"{namespace}/{name}"
        manifest = self.store.get(EXTERNAL_SECRET_KIND, namespace, name)
        if manifest is None:
            logger.info(f"ExternalSecret {identity} is gone, removing schedule")
            self.forget(namespace, name)
            return

        request = SyncRequest.from_manifest(manifest)
        if not self.should_schedule(request):
            logger.info(f"ExternalSecret {identity} no longer qualifies for scheduling")
            if self.scheduler is not None:
                self.scheduler.remove(identity)
            return

        self.sync(request, trigger=TRIGGER_SCHEDULE)

    def forget(self, namespace: str, name: str) -> None:
        """Drop everything held for a deleted request."""
        identity = f"{namespace}/{name}"
        if self.scheduler is not None:
            self.scheduler.remove(identity)
        with self._states_lock:
            self._states.pop(identity, None)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def sync(self, request: SyncRequest, trigger: str = TRIGGER_EVENT) -> bool:
        """
        Run one full cycle and record its status.

        Returns:
            True if the Secret was written
        """
        with self.locks.hold(request.identity):
            return self._sync_locked(request, trigger)

    def _sync_locked(self, request: SyncRequest, trigger: str) -> bool:
        identity = request.identity
        self._set_state(identity, SyncState.SYNCING)
        with track_time() as t:
            try:
                outcome = self._run_cycle(request)
                failure = None
            except CycleFailure as e:
                outcome, failure = None, e

        if failure is None:
            request.status.next_sync = self.next_sync(request)
            condition = Condition(
                type=CONDITION_READY, status="True", reason=REASON_AVAILABLE
            )
            self._set_state(identity, SyncState.AVAILABLE)
            Metrics.sync_success(trigger, latency=t["duration"])
            logger.info(f"Synced ExternalSecret {identity} ({outcome}, trigger={trigger})")
        else:
            condition = Condition(
                type=CONDITION_READY,
                status="False",
                reason=failure.reason,
                message=str(failure),
            )
            self._set_state(identity, SyncState.UNAVAILABLE)
            Metrics.sync_error(trigger, failure.reason, latency=t["duration"])
            logger.error(f"Error syncing ExternalSecret {identity}: {failure}")

        condition.last_transition_time = format_time(self.clock())
        request.status.set_condition(condition)
        self._write_status(request)
        return failure is None

    def _get_store(self, request: SyncRequest) -> dict:
        ref = request.store_ref
        namespace = None if ref.kind == CLUSTER_SECRET_STORE_KIND else request.namespace
        store = self.store.get(ref.kind, namespace, ref.name)
        if store is None:
            where = ref.name if namespace is None else f"{namespace}/{ref.name}"
            raise StoreNotFoundError(f"{ref.kind} {where!r} not found")
        return store

    def _run_cycle(self, request: SyncRequest) -> str:
        try:
            store_manifest = self._get_store(request)
        except SecretSyncError as e:
            raise CycleFailure(REASON_STORE_NOT_FOUND, ERR_STORE_NOT_FOUND, e) from e
        except Exception as e:
            raise CycleFailure(
                REASON_STORE_NOT_FOUND, ERR_STORE_NOT_FOUND, StoreNotFoundError(str(e))
            ) from e

        try:
            store = StoreConfig.from_manifest(store_manifest)
            client = self.resolver.resolve(store, namespace=request.namespace)
        except SecretSyncError as e:
            raise CycleFailure(REASON_STORE_SETUP_FAILED, ERR_STORE_SETUP_FAILED, e) from e

        try:
            payload = self.merge_engine.build_data(client, request.data_from, request.data)
        except SecretSyncError as e:
            raise CycleFailure(REASON_FETCH_FAILED, ERR_FETCH_FAILED, e) from e

        try:
            desired = self.merge_engine.render(request, payload)
        except SecretSyncError as e:
            raise CycleFailure(REASON_TEMPLATE_FAILED, ERR_TEMPLATE_FAILED, e) from e

        try:
            return self.store.create_or_update(
                SECRET_KIND, request.namespace, request.name, partial(_apply_desired, desired)
            )
        except Exception as e:
            raise CycleFailure(REASON_UPSERT_FAILED, ERR_UPSERT_FAILED, UpsertError(str(e))) from e

    def _write_status(self, request: SyncRequest) -> None:
        try:
            self.store.update_status(
                EXTERNAL_SECRET_KIND, request.namespace, request.name, request.status.to_dict()
            )
        except Exception as e:
            logger.error(f"Error updating status of ExternalSecret {request.identity}: {e}")


def _apply_desired(desired: dict, secret: dict) -> None:
    """Overwrite the fields the controller manages, keep everything else."""
    metadata = secret.setdefault("metadata", {})
    desired_meta = desired["metadata"]
    metadata["labels"] = dict(desired_meta.get("labels") or {})
    metadata["annotations"] = dict(desired_meta.get("annotations") or {})
    metadata["ownerReferences"] = list(desired_meta.get("ownerReferences") or [])
    secret["type"] = desired.get("type", secret.get("type"))
    secret["data"] = dict(desired.get("data") or {})
    secret.pop("stringData", None)
