"""Tests for the ExternalSecret watch loop."""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import ProtocolError

from controller.kubernetes_store import CRD_GROUP, CRD_VERSION
from controller.reconciler import Result, SyncState
from controller.watch import ExternalSecretWatcher


def event(event_type, name="db-creds", generation=1, resource_version="10"):
    return {
        "type": event_type,
        "object": {
            "metadata": {
                "name": name,
                "namespace": "default",
                "generation": generation,
                "resourceVersion": resource_version,
            }
        },
    }


@pytest.fixture
def reconciler():
    reconciler = MagicMock()
    reconciler.requeue_after = timedelta(seconds=30)
    reconciler.reconcile.return_value = Result(state=SyncState.AVAILABLE)
    return reconciler


@pytest.fixture
def scheduler():
    return MagicMock()


@pytest.fixture
def watcher(reconciler, scheduler):
    w = ExternalSecretWatcher(MagicMock(), reconciler, scheduler)
    w._executor.shutdown()
    w._executor = MagicMock()
    yield w


class TestHandleEvent:
    """Tests for event dispatching."""

    def test_added_dispatches(self, watcher):
        watcher.handle_event(event("ADDED"))

        watcher._executor.submit.assert_called_once_with(
            watcher.dispatch, "default", "db-creds"
        )

    def test_status_only_modification_ignored(self, watcher):
        watcher.handle_event(event("ADDED", generation=1))

        watcher.handle_event(event("MODIFIED", generation=1))

        assert watcher._executor.submit.call_count == 1

    def test_spec_change_dispatches(self, watcher):
        watcher.handle_event(event("ADDED", generation=1))

        watcher.handle_event(event("MODIFIED", generation=2))

        assert watcher._executor.submit.call_count == 2

    def test_deleted_forgets(self, watcher, reconciler):
        watcher.handle_event(event("DELETED"))

        reconciler.forget.assert_called_once_with("default", "db-creds")
        watcher._executor.submit.assert_not_called()

    def test_event_without_name_ignored(self, watcher):
        watcher.handle_event({"type": "ADDED", "object": {"metadata": {}}})

        watcher._executor.submit.assert_not_called()


class TestDispatch:
    """Tests for reconcile + requeue."""

    def test_success_is_not_requeued(self, watcher, scheduler):
        result = watcher.dispatch("default", "db-creds")

        assert result.state == SyncState.AVAILABLE
        scheduler.requeue.assert_not_called()

    def test_failure_is_requeued(self, watcher, reconciler, scheduler):
        # Arrange
        reconciler.reconcile.return_value = Result(
            state=SyncState.UNAVAILABLE, requeue_after=timedelta(seconds=30)
        )

        # Act
        watcher.dispatch("default", "db-creds")

        # Assert
        identity, delay, job = scheduler.requeue.call_args.args
        assert identity == "default/db-creds"
        assert delay == timedelta(seconds=30)
        assert job.args == ("default", "db-creds")

    def test_unexpected_error_is_requeued(self, watcher, reconciler, scheduler):
        reconciler.reconcile.side_effect = RuntimeError("boom")

        result = watcher.dispatch("default", "db-creds")

        assert result.state == SyncState.UNAVAILABLE
        assert scheduler.requeue.call_args.args[1] == timedelta(seconds=30)


class TestRun:
    """Tests for the watch stream loop."""

    def test_streams_cluster_wide(self, watcher):
        with patch("controller.watch.watch.Watch") as mock_watch:
            mock_watch.return_value.stream.return_value = iter([event("ADDED")])
            with patch.object(watcher, "handle_event", side_effect=lambda e: watcher._stop.set()):
                watcher.run()

        mock_watch.return_value.stream.assert_called_once_with(
            watcher.custom_api.list_cluster_custom_object,
            CRD_GROUP,
            CRD_VERSION,
            "externalsecrets",
            timeout_seconds=300,
        )

    def test_streams_one_namespace(self, reconciler, scheduler):
        w = ExternalSecretWatcher(MagicMock(), reconciler, scheduler, namespace="team-a")
        with patch("controller.watch.watch.Watch") as mock_watch:
            mock_watch.return_value.stream.return_value = iter([event("ADDED")])
            with patch.object(w, "handle_event", side_effect=lambda e: w._stop.set()):
                w.run()
        w.stop()

        args = mock_watch.return_value.stream.call_args.args
        assert args[0] is w.custom_api.list_namespaced_custom_object
        assert args[3] == "team-a"

    def test_expired_watch_relists(self, watcher):
        with patch("controller.watch.watch.Watch") as mock_watch:
            mock_watch.return_value.stream.side_effect = [
                ApiException(status=410),
                iter([event("ADDED")]),
            ]
            with patch.object(watcher, "handle_event", side_effect=lambda e: watcher._stop.set()):
                watcher.run()

        calls = mock_watch.return_value.stream.call_args_list
        assert len(calls) == 2
        assert "resource_version" not in calls[1].kwargs

    def test_broken_connection_reconnects(self, watcher):
        # Arrange
        broken = ProtocolError("Connection broken: IncompleteRead")
        with patch("controller.watch.watch.Watch") as mock_watch, patch.object(
            watcher._stop, "wait"
        ) as backoff:
            mock_watch.return_value.stream.side_effect = [broken, iter([event("ADDED")])]
            with patch.object(watcher, "handle_event", side_effect=lambda e: watcher._stop.set()):
                # Act
                watcher.run()

        # Assert
        assert mock_watch.return_value.stream.call_count == 2
        backoff.assert_called_once_with(5)

    def test_broken_stream_keeps_resource_version(self, watcher):
        def broken_after_first_event():
            yield event("ADDED", resource_version="42")
            raise ProtocolError("Connection broken")

        seen = []

        def handle(e):
            seen.append(e)
            if len(seen) == 2:
                watcher._stop.set()

        with patch("controller.watch.watch.Watch") as mock_watch, patch.object(
            watcher._stop, "wait"
        ):
            mock_watch.return_value.stream.side_effect = [
                broken_after_first_event(),
                iter([event("ADDED", name="other")]),
            ]
            with patch.object(watcher, "handle_event", side_effect=handle):
                watcher.run()

        calls = mock_watch.return_value.stream.call_args_list
        assert calls[1].kwargs["resource_version"] == "42"

    def test_stop(self, watcher):
        watcher.stop()

        assert watcher._stop.is_set()
        watcher._executor.shutdown.assert_called_once_with(wait=True)
