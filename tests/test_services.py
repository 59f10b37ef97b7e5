"""
Tests for service classes against an isolated database.
"""
import os

import pytest

from app.clustering.exceptions import (
    ConfigurationNotFoundError,
    MissingCentroidsError,
    RunNotFoundError,
    RunStateError,
)
from app.clustering.models import FINAL_ITERATION, AccessEvent, CentroidVariant, ModuleNode, Point
from app.models.centroid import StudentCentre, StudentCentroid
from app.models.cluster import ClusterMember, ClusterRecord
from app.models.course import AccessLog, BehaviourCourse
from app.models.graph import ConfigurationScale, NodeCoordinate
from app.models.ml_metrics import ClusteringAlert, ClusteringQualityMetrics
from app.services.centroid_service import CentroidService
from app.services.cluster_service import ClusterService, iteration_order
from app.services.config_service import config_service
from app.services.graph_service import GraphService
from app.services.log_import_service import LogImportService
from app.services.ml_monitoring_service import MLMonitoringService
from app.services.reconcile_service import ReconcileService

COURSE_ID = 1
OWNER = "teacher"

# Two pairs of modules far apart, module 5 hidden
POSITIONS = {
    1: ModuleNode(0, 0),
    2: ModuleNode(10, 0),
    3: ModuleNode(100, 100),
    4: ModuleNode(110, 100),
    5: ModuleNode(50, 50, visible=False),
}


@pytest.fixture
def first_clicks():
    return [
        AccessEvent("s1", 1, 100),
        AccessEvent("s2", 2, 101),
        AccessEvent("s3", 3, 102),
        AccessEvent("s4", 4, 103),
        AccessEvent("s4", 5, 104),
    ]


@pytest.fixture
def configured_course(isolated_db_session, first_clicks):
    """Course with logged clicks and one saved configuration."""
    CentroidService().update_course(COURSE_ID, isolated_db_session, first_clicks)
    configuration_id = GraphService().save_configuration(COURSE_ID, OWNER, POSITIONS, isolated_db_session)
    return configuration_id


@pytest.fixture
def finished_run(isolated_db_session, configured_course):
    return ClusterService().start_run(COURSE_ID, OWNER, configured_course, 2, isolated_db_session, seed=0)


def groups(summary):
    return sorted(cluster["members"] for cluster in summary["clusters"].values())


class TestGraphService:
    """Test GraphService."""

    def test_save_normalizes_layout(self, isolated_db_session):
        """Stored coordinates lie on or inside the unit disk."""
        service = GraphService()
        configuration_id = service.save_configuration(COURSE_ID, OWNER, POSITIONS, isolated_db_session)

        configuration = service.get_configuration(COURSE_ID, OWNER, configuration_id, isolated_db_session)

        assert configuration_id == 1
        assert configuration.center.x == 55
        assert configuration.center.y == 50
        assert configuration.nodes[5].visible is False
        for node in configuration.nodes.values():
            assert node.x ** 2 + node.y ** 2 <= 1.0 + 1e-9

    def test_new_configuration_ids_increase(self, isolated_db_session):
        service = GraphService()
        first = service.save_configuration(COURSE_ID, OWNER, POSITIONS, isolated_db_session)
        second = service.save_configuration(COURSE_ID, OWNER, POSITIONS, isolated_db_session)
        other_owner = service.save_configuration(COURSE_ID, "researcher", POSITIONS, isolated_db_session)

        assert (first, second, other_owner) == (1, 2, 1)
        assert service.latest_configuration_id(COURSE_ID, OWNER, isolated_db_session) == 2
        assert len(service.get_configurations(COURSE_ID, isolated_db_session)) == 3
        assert len(service.get_configurations(COURSE_ID, isolated_db_session, owner_id="researcher")) == 1

    def test_overwrite_replaces_nodes(self, isolated_db_session):
        service = GraphService()
        configuration_id = service.save_configuration(COURSE_ID, OWNER, POSITIONS, isolated_db_session)

        service.save_configuration(
            COURSE_ID, OWNER, {1: ModuleNode(0, 0), 2: ModuleNode(2, 0)}, isolated_db_session,
            configuration_id=configuration_id,
        )

        configuration = service.get_configuration(COURSE_ID, OWNER, configuration_id, isolated_db_session)
        assert sorted(configuration.nodes) == [1, 2]

    def test_missing_configuration(self, isolated_db_session):
        with pytest.raises(ConfigurationNotFoundError):
            GraphService().get_configuration(COURSE_ID, OWNER, 9, isolated_db_session)

    def test_configurations_to_update(self, isolated_db_session, configured_course, finished_run):
        service = GraphService()
        service.save_configuration(COURSE_ID, OWNER, POSITIONS, isolated_db_session)

        to_update = service.configurations_to_update(COURSE_ID, isolated_db_session)

        assert to_update == {OWNER: {configured_course, configured_course + 1}}


class TestCentroidService:
    """Test CentroidService."""

    def test_events_without_configuration_are_stored(self, isolated_db_session, first_clicks):
        result = CentroidService().update_course(COURSE_ID, isolated_db_session, first_clicks)

        assert result["events_processed"] == 5
        assert result["configurations"] == 0
        assert result["last_sync"] == 104
        assert isolated_db_session.query(AccessLog).count() == 5

    def test_saving_configuration_rebuilds_centroids(self, isolated_db_session, configured_course):
        points = CentroidService().get_student_points(
            COURSE_ID, OWNER, configured_course, CentroidVariant.GEOMETRIC, isolated_db_session
        )

        assert sorted(points) == ["s1", "s2", "s3", "s4"]
        # The hidden module click is not counted
        row = isolated_db_session.query(StudentCentroid).filter(StudentCentroid.student_id == "s4").first()
        assert row.count == 1

    def test_update_is_incremental(self, isolated_db_session, configured_course):
        service = CentroidService()
        before = service.get_student_points(
            COURSE_ID, OWNER, configured_course, CentroidVariant.GEOMETRIC, isolated_db_session
        )

        result = service.update_course(
            COURSE_ID, isolated_db_session, [AccessEvent("s1", 2, 200)], reconcile=False
        )
        after = service.get_student_points(
            COURSE_ID, OWNER, configured_course, CentroidVariant.GEOMETRIC, isolated_db_session
        )

        assert result["updated_centroids"] == 1
        assert after["s1"].x == pytest.approx((before["s1"].x + before["s2"].x) / 2)
        assert after["s3"] == before["s3"]

    def test_old_events_are_skipped(self, isolated_db_session, configured_course):
        result = CentroidService().update_course(
            COURSE_ID, isolated_db_session, [AccessEvent("s1", 2, 50)], reconcile=False
        )

        assert result["events_processed"] == 0
        assert isolated_db_session.query(AccessLog).count() == 5

    def test_imported_events_keep_last_sync(self, isolated_db_session, configured_course):
        result = CentroidService().update_course(
            COURSE_ID, isolated_db_session, [AccessEvent("s1", 2, 50)], imported=True, reconcile=False
        )

        assert result["events_processed"] == 1
        assert isolated_db_session.get(BehaviourCourse, COURSE_ID).last_sync == 104

    def test_decomposed_centre_follows_history(self, isolated_db_session, configured_course):
        service = CentroidService()
        service.update_course(
            COURSE_ID,
            isolated_db_session,
            [AccessEvent("s1", 3, 200), AccessEvent("s1", 4, 210)],
            reconcile=False,
        )

        centres = service.get_student_points(
            COURSE_ID, OWNER, configured_course, CentroidVariant.DECOMPOSED, isolated_db_session
        )
        configuration = GraphService().get_configuration(COURSE_ID, OWNER, configured_course, isolated_db_session)

        # History 1, 3, 4: the middle click is module 3
        assert centres["s1"] == configuration.visible_point(3)

    def test_reset_course_deletes_everything(self, isolated_db_session, configured_course, finished_run):
        result = CentroidService().reset_course(COURSE_ID, isolated_db_session)

        assert result["deleted"]["access_logs"] == 5
        assert result["deleted"]["cluster_records"] > 0
        for model in (
            ClusterRecord, ClusterMember, NodeCoordinate, ConfigurationScale, StudentCentroid, StudentCentre, AccessLog
        ):
            assert isolated_db_session.query(model).count() == 0
        assert isolated_db_session.get(BehaviourCourse, COURSE_ID).last_sync == 0

    def test_reset_clusters_only(self, isolated_db_session, configured_course, finished_run):
        CentroidService().reset_course(COURSE_ID, isolated_db_session, graph=False, logs=False)

        assert isolated_db_session.query(ClusterRecord).count() == 0
        assert isolated_db_session.query(StudentCentroid).count() == 4
        assert isolated_db_session.query(AccessLog).count() == 5
        assert isolated_db_session.get(BehaviourCourse, COURSE_ID).last_sync == 104
        assert ClusterService().list_runs(COURSE_ID, isolated_db_session) == []


class TestClusterService:
    """Test ClusterService."""

    def test_start_run_converges(self, finished_run):
        assert finished_run["run_id"] == 1
        assert finished_run["finished"]
        assert finished_run["converged"]
        assert finished_run["current_iteration"] == FINAL_ITERATION
        assert groups(finished_run) == [["s1", "s2"], ["s3", "s4"]]

    def test_run_ids_increase(self, isolated_db_session, configured_course, finished_run):
        second = ClusterService().start_run(COURSE_ID, OWNER, configured_course, 2, isolated_db_session, seed=1)

        assert second["run_id"] == 2

    def test_history_is_in_recorded_order(self, isolated_db_session, configured_course, finished_run):
        history = ClusterService().get_run_history(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)

        numbers = [it["iteration"] for it in history["iterations"]]
        assert numbers[0] == 0
        assert numbers[-1] == FINAL_ITERATION
        for iteration in history["iterations"]:
            assert len(iteration["clusters"]) == 2
            assert sorted(m["student_id"] for m in iteration["members"]) == ["s1", "s2", "s3", "s4"]

    def test_load_state_round_trip(self, isolated_db_session, configured_course, finished_run):
        state = ClusterService().load_state(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)

        assert state.finished
        assert state.k == 2
        assert state.variant is CentroidVariant.GEOMETRIC
        assert state.colours == {0: "blue", 1: "red"}
        assert sorted(sorted(m) for m in state.current.members().values()) == [["s1", "s2"], ["s3", "s4"]]

    def test_list_runs(self, isolated_db_session, configured_course, finished_run):
        runs = ClusterService().list_runs(COURSE_ID, isolated_db_session, owner_id=OWNER)

        assert len(runs) == 1
        assert runs[0]["finished"]
        assert runs[0]["k"] == 2
        assert runs[0]["variant"] == "geometric"
        assert runs[0]["current_iteration"] == FINAL_ITERATION

    def test_decomposed_run(self, isolated_db_session, configured_course):
        summary = ClusterService().start_run(
            COURSE_ID, OWNER, configured_course, 2, isolated_db_session, variant=CentroidVariant.DECOMPOSED, seed=3
        )

        assert summary["variant"] == "decomposed"
        assert groups(summary) == [["s1", "s2"], ["s3", "s4"]]

    def test_manual_reassignment_is_pinned(self, isolated_db_session, configured_course):
        service = ClusterService()
        started = service.start_run(COURSE_ID, OWNER, configured_course, 2, isolated_db_session, seed=0, passes=1)
        assert not started["finished"]

        current = next(n for n, c in started["clusters"].items() if "s1" in c["members"])
        target = 1 - current
        reassigned = service.reassign_member(COURSE_ID, OWNER, configured_course, 1, "s1", target, isolated_db_session)
        assert reassigned["pinned"] == {"s1": target}

        finished = service.advance_run(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)

        assert finished["finished"]
        assert "s1" in finished["clusters"][target]["members"]
        history = service.get_run_history(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)
        first_pinned = next(i for i, it in enumerate(history["iterations"]) if it["members"][0]["pinned"])
        assert first_pinned == 2
        for iteration in history["iterations"][first_pinned:]:
            member = next(m for m in iteration["members"] if m["student_id"] == "s1")
            assert member["pinned"]
            assert member["cluster_number"] == target

    def test_reassign_finished_run_is_rejected(self, isolated_db_session, configured_course, finished_run):
        with pytest.raises(RunStateError):
            ClusterService().reassign_member(COURSE_ID, OWNER, configured_course, 1, "s1", 0, isolated_db_session)

    def test_advance_finished_run_is_rejected(self, isolated_db_session, configured_course, finished_run):
        with pytest.raises(RunStateError):
            ClusterService().advance_run(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)

    def test_missing_configuration(self, isolated_db_session):
        with pytest.raises(ConfigurationNotFoundError):
            ClusterService().start_run(COURSE_ID, OWNER, 1, 2, isolated_db_session)

    def test_configuration_without_centroids(self, isolated_db_session):
        configuration_id = GraphService().save_configuration(2, OWNER, POSITIONS, isolated_db_session)

        with pytest.raises(MissingCentroidsError):
            ClusterService().start_run(2, OWNER, configuration_id, 2, isolated_db_session)

    def test_delete_run(self, isolated_db_session, configured_course, finished_run):
        service = ClusterService()

        deleted = service.delete_run(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)

        assert deleted > 0
        with pytest.raises(RunNotFoundError):
            service.load_state(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)
        with pytest.raises(RunNotFoundError):
            service.delete_run(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)

    def test_quality_measures_against_manual_clustering(self, isolated_db_session, configured_course, finished_run):
        service = ClusterService()
        automatic = {s: n for n, c in finished_run["clusters"].items() for s in c["members"]}
        manual = dict(automatic, s2=automatic["s3"])

        stored = service.save_manual_clustering(
            COURSE_ID, OWNER, configured_course, 1, FINAL_ITERATION, manual, isolated_db_session
        )
        report = service.get_quality_measures(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)

        assert len(stored["clusters"]) == 2
        assert report["iteration"] == FINAL_ITERATION
        assert report["total"]["true_positive"] == 3
        assert report["total"]["false_positive"] == 1
        assert report["total"]["false_negative"] == 1
        assert report["total"]["precision"] == 0.75

    def test_quality_measures_need_manual_clustering(self, isolated_db_session, configured_course, finished_run):
        with pytest.raises(RunStateError):
            ClusterService().get_quality_measures(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)

    def test_iteration_order(self):
        numbers = [-3, 2, -1, 0, -2, 1]

        assert sorted(numbers, key=iteration_order) == [0, 1, 2, -1, -2, -3]


class TestReconcileService:
    """Test ReconcileService."""

    def test_unchanged_run_adds_nothing(self, isolated_db_session, configured_course, finished_run):
        result = ReconcileService().reconcile_run(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)

        assert result["status"] == "converged"
        assert result["iterations_added"] == 0
        assert result["current_iteration"] == FINAL_ITERATION

    def test_new_events_move_student(self, isolated_db_session, configured_course, finished_run):
        moving = [AccessEvent("s1", 4, 200 + i) for i in range(3)]

        result = CentroidService().update_course(COURSE_ID, isolated_db_session, moving)

        reconciliation = result["reconciliation"]
        assert reconciliation["runs"] == 1
        assert reconciliation["iterations_added"] >= 1

        state = ClusterService().load_state(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)
        assert state.current.iteration <= -2
        assert state.current.converged
        assert state.current.assignments["s1"] == state.current.assignments["s3"]
        assert state.current.assignments["s2"] != state.current.assignments["s3"]

    def test_second_reconcile_is_idempotent(self, isolated_db_session, configured_course, finished_run):
        CentroidService().update_course(COURSE_ID, isolated_db_session, [AccessEvent("s1", 4, 200 + i) for i in range(3)])

        again = ReconcileService().reconcile_course(COURSE_ID, isolated_db_session)

        assert again["runs"] == 1
        assert again["iterations_added"] == 0

    def test_unfinished_run_is_skipped(self, isolated_db_session, configured_course):
        ClusterService().start_run(COURSE_ID, OWNER, configured_course, 2, isolated_db_session, seed=0, passes=1)

        result = ReconcileService().reconcile_run(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)

        assert result["status"] == "skipped"

    def test_reconciliation_metrics_are_recorded(self, isolated_db_session, configured_course, finished_run):
        CentroidService().update_course(COURSE_ID, isolated_db_session, [AccessEvent("s1", 4, 200 + i) for i in range(3)])

        triggers = [m.trigger for m in isolated_db_session.query(ClusteringQualityMetrics).all()]

        assert triggers.count("kmeans") == 1
        assert triggers.count("reconcile") == 1

    def test_capped_run_is_picked_up_on_next_pass(self, isolated_db_session, configured_course, finished_run):
        config_service.set_setting("CLUSTER_RECONCILE_MAX_ITERATIONS", 1)
        summary = CentroidService().update_course(
            COURSE_ID, isolated_db_session, [AccessEvent("s1", 4, 200 + i) for i in range(3)]
        )

        capped = summary["reconciliation"]["owners"][OWNER]["runs"][0]
        assert capped["status"] == "cap_reached"
        assert capped["iterations_added"] == 1
        state = ClusterService().load_state(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)
        assert not state.current.converged

        config_service.set_setting("CLUSTER_RECONCILE_MAX_ITERATIONS", 100)
        service = ReconcileService()
        resumed = service.reconcile_run(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)

        assert resumed["status"] == "converged"
        state = ClusterService().load_state(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)
        assert state.current.converged

        again = service.reconcile_run(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)
        assert again["status"] == "converged"
        assert again["iterations_added"] == 0

    def test_decomposed_students_sharing_a_node_converge(self, isolated_db_session, configured_course):
        """Two students on one module node leave a cluster with no possible members."""
        ClusterService().start_run(
            COURSE_ID, OWNER, configured_course, 4, isolated_db_session, variant=CentroidVariant.DECOMPOSED, seed=3
        )

        # History 2, 1, 1 puts s2 on the same node as s1
        summary = CentroidService().update_course(
            COURSE_ID, isolated_db_session, [AccessEvent("s2", 1, 200), AccessEvent("s2", 1, 201)]
        )

        reconciliation = summary["reconciliation"]
        assert reconciliation["cap_reached"] == 0
        state = ClusterService().load_state(COURSE_ID, OWNER, configured_course, 1, isolated_db_session)
        assert state.current.converged
        assert state.current.assignments["s1"] == state.current.assignments["s2"]

        again = ReconcileService().reconcile_course(COURSE_ID, isolated_db_session)
        assert again["cap_reached"] == 0
        assert again["iterations_added"] == 0

    def test_missing_run(self, isolated_db_session, configured_course):
        with pytest.raises(RunNotFoundError):
            ReconcileService().reconcile_run(COURSE_ID, OWNER, configured_course, 5, isolated_db_session)


class TestLogImportService:
    """Test LogImportService."""

    def test_read_csv(self, tmp_path):
        path = tmp_path / "log.csv"
        path.write_text("userId,moduleId,time\ns2,3,20\ns1,2,15\ns1,1,10\nbad,abc,12\n")
        service = LogImportService(upload_dir=str(tmp_path / "uploads"))

        events = service.read_events(str(path))

        assert events == [AccessEvent("s1", 1, 10), AccessEvent("s1", 2, 15), AccessEvent("s2", 3, 20)]

    def test_read_json(self, tmp_path):
        path = tmp_path / "log.json"
        path.write_text('[{"studentId": "7", "moduleId": 4, "time": 30}, {"studentId": "7", "moduleId": 1, "time": 5}]')
        service = LogImportService(upload_dir=str(tmp_path / "uploads"))

        events = service.read_events(str(path))

        assert events == [AccessEvent("7", 1, 5), AccessEvent("7", 4, 30)]

    def test_missing_columns(self, tmp_path):
        path = tmp_path / "log.csv"
        path.write_text("userId,time\ns1,10\n")

        with pytest.raises(ValueError):
            LogImportService(upload_dir=str(tmp_path / "uploads")).read_events(str(path))

    def test_unsupported_file_type(self, tmp_path):
        with pytest.raises(ValueError):
            LogImportService(upload_dir=str(tmp_path / "uploads")).read_events(str(tmp_path / "log.xlsx"))

    def test_import_file(self, isolated_db_session, tmp_path):
        path = tmp_path / "log.csv"
        path.write_text("studentId,moduleId,time\ns1,1,10\ns2,2,11\n")
        service = LogImportService(upload_dir=str(tmp_path / "uploads"))

        result = service.import_file(COURSE_ID, str(path), isolated_db_session)

        assert result["rows_imported"] == 2
        assert result["last_sync"] == 0
        assert isolated_db_session.query(AccessLog).count() == 2

    def test_save_and_cleanup_upload(self, tmp_path):
        service = LogImportService(upload_dir=str(tmp_path / "uploads"))

        saved = service.save_uploaded_file(b"studentId,moduleId,time\n", "my log.csv")
        assert saved.endswith("_mylog.csv")

        service.cleanup_file(saved)
        assert not os.path.exists(saved)

    def test_saved_file_is_stamped_with_current_time(self, tmp_path, monkeypatch):
        monkeypatch.setenv("APP_NOW_MODE", "fake")
        monkeypatch.setenv("APP_FAKE_NOW", "2024-03-01")
        service = LogImportService(upload_dir=str(tmp_path / "uploads"))

        saved = service.save_uploaded_file(b"studentId,moduleId,time\n", "log.csv")

        assert os.path.basename(saved) == "20240301_000000_log.csv"


class TestMLMonitoringService:
    """Test MLMonitoringService."""

    RUN_KEY = {"course_id": COURSE_ID, "owner_id": OWNER, "configuration_id": 1, "run_id": 1}

    def _record(self, db, converged=True, regenerated=0):
        points = {"a": Point(0, 0), "b": Point(0.1, 0), "c": Point(5, 5), "d": Point(5.1, 5)}
        return MLMonitoringService().record_clustering_metrics(
            run_key=self.RUN_KEY,
            trigger="kmeans",
            variant="geometric",
            n_clusters=2,
            points=points,
            assignments={"a": 0, "b": 0, "c": 1, "d": 1},
            passes=3,
            iterations_recorded=4,
            regenerated_clusters=regenerated,
            converged=converged,
            processing_time=0.01,
            db=db,
        )

    def test_record_metrics(self, isolated_db_session):
        assert self._record(isolated_db_session)

        history = MLMonitoringService().get_course_quality_history(COURSE_ID, isolated_db_session)

        assert len(history) == 1
        assert history[0]["silhouette_score"] > 0.9
        assert history[0]["total_students"] == 4
        assert MLMonitoringService().get_active_alerts(isolated_db_session) == []

    def test_cap_and_regeneration_raise_alerts(self, isolated_db_session):
        self._record(isolated_db_session, converged=False, regenerated=3)

        service = MLMonitoringService()
        alerts = service.get_active_alerts(isolated_db_session, course_id=COURSE_ID)

        assert sorted(a["alert_type"] for a in alerts) == ["empty_cluster_regenerated", "iteration_cap_exceeded"]
        assert service.get_alert_summary(isolated_db_session) == {
            "empty_cluster_regenerated": 1,
            "iteration_cap_exceeded": 1,
        }

    def test_resolve_alert(self, isolated_db_session):
        self._record(isolated_db_session, converged=False)
        service = MLMonitoringService()
        alert_id = service.get_active_alerts(isolated_db_session)[0]["id"]

        assert service.resolve_alert(alert_id, "re-run with smaller k", isolated_db_session)
        assert service.get_active_alerts(isolated_db_session) == []
        assert isolated_db_session.get(ClusteringAlert, alert_id).resolution_notes == "re-run with smaller k"

    def test_resolve_missing_alert(self, isolated_db_session):
        assert not MLMonitoringService().resolve_alert(99, "none", isolated_db_session)
