"""Watch loop - streams ExternalSecret events into the reconciler."""

import threading
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Optional

from kubernetes import watch
from kubernetes.client.exceptions import ApiException

from controller.kubernetes_store import CRD_GROUP, CRD_PLURALS, CRD_VERSION
from controller.reconciler import Reconciler, Result, SyncState
from core.scheduler.scheduler import Scheduler
from core.schema.sync_request import EXTERNAL_SECRET_KIND
from core.utils.logging import get_logger

logger = get_logger(__name__)


class ExternalSecretWatcher:
    """
    Feeds ExternalSecret watch events to a Reconciler.

    - ADDED, or MODIFIED with a new ``metadata.generation``: reconcile
    - MODIFIED with an unchanged generation (status writes): ignored
    - DELETED: schedule removed

    Reconciles run on a small worker pool; failed ones are retried after
    the reconciler's ``requeue_after`` through the scheduler.

    Usage:
        watcher = ExternalSecretWatcher(custom_api, reconciler, scheduler)
        watcher.run()  # blocks until stop()
    """

    def __init__(
        self,
        custom_api,
        reconciler: Reconciler,
        scheduler: Optional[Scheduler] = None,
        namespace: str = "",
        max_workers: int = 4,
        timeout_seconds: int = 300,
    ):
        self.custom_api = custom_api
        self.reconciler = reconciler
        self.scheduler = scheduler
        self.namespace = namespace
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers, thread_name_prefix="reconcile")
        self._generations: dict = {}
        self._stop = threading.Event()
        self._watch: Optional[watch.Watch] = None

    def handle_event(self, event: dict) -> None:
        event_type = event.get("type")
        obj = event.get("object") or {}
        metadata = obj.get("metadata") or {}
        name = metadata.get("name")
        if not name:
            return
        namespace = metadata.get("namespace") or "default"
        identity = f"{namespace}/{name}"

        if event_type == "DELETED":
            logger.info(f"ExternalSecret {identity} deleted")
            self._generations.pop(identity, None)
            self.reconciler.forget(namespace, name)
            return

        generation = metadata.get("generation")
        if (
            event_type == "MODIFIED"
            and generation is not None
            and self._generations.get(identity) == generation
        ):
            return
        self._generations[identity] = generation

        logger.debug(f"{event_type} ExternalSecret {identity}")
        self._executor.submit(self.dispatch, namespace, name)

    def dispatch(self, namespace: str, name: str) -> Result:
        """Reconcile one request and requeue it on failure."""
        identity = f"{namespace}/{name}"
        try:
            result = self.reconciler.reconcile(namespace, name)
        except Exception as e:
            logger.error(f"Unexpected error reconciling {identity}: {e}", exc_info=True)
            result = Result(
                state=SyncState.UNAVAILABLE, requeue_after=self.reconciler.requeue_after
            )

        if result.requeue_after and self.scheduler is not None:
            self.scheduler.requeue(
                identity, result.requeue_after, partial(self.dispatch, namespace, name)
            )
        return result

    def _stream(self, resource_version: Optional[str]):
        plural = CRD_PLURALS[EXTERNAL_SECRET_KIND]
        kwargs = {"timeout_seconds": self.timeout_seconds}
        if resource_version:
            kwargs["resource_version"] = resource_version
        self._watch = watch.Watch()
        if self.namespace:
            return self._watch.stream(
                self.custom_api.list_namespaced_custom_object,
                CRD_GROUP, CRD_VERSION, self.namespace, plural, **kwargs,
            )
        return self._watch.stream(
            self.custom_api.list_cluster_custom_object,
            CRD_GROUP, CRD_VERSION, plural, **kwargs,
        )

    def run(self) -> None:
        """Watch until ``stop()``; reconnects when the stream ends."""
        scope = self.namespace or "all namespaces"
        logger.info(f"Watching ExternalSecrets in {scope}")
        resource_version = None

        while not self._stop.is_set():
            try:
                for event in self._stream(resource_version):
                    if self._stop.is_set():
                        break
                    metadata = (event.get("object") or {}).get("metadata") or {}
                    resource_version = metadata.get("resourceVersion", resource_version)
                    self.handle_event(event)
            except ApiException as e:
                if e.status == 410:
                    logger.info("Watch expired, relisting")
                    resource_version = None
                    continue
                logger.error(f"Watch failed: {e.status} {e.reason}")
                self._stop.wait(5)
            except Exception as e:
                # Dropped connections and read timeouts; resume from the last version
                logger.error(f"Watch stream broken: {e}", exc_info=True)
                self._stop.wait(5)

    def stop(self) -> None:
        self._stop.set()
        if self._watch is not None:
            self._watch.stop()
        self._executor.shutdown(wait=True)
        logger.info("Watcher stopped")
