"""
Tests for Celery tasks, run eagerly against the isolated database.
"""
from contextlib import contextmanager

import pytest

from app.clustering.models import ModuleNode
from app.services.graph_service import GraphService
from worker import cluster_tasks

EVENTS = [
    {"student_id": "s1", "module_id": 1, "time": 100},
    {"student_id": "s2", "module_id": 2, "time": 101},
    {"student_id": 3, "module_id": "3", "time": 102},
    {"student_id": "s4", "module_id": 4, "time": 103},
]


@pytest.fixture
def task_db(isolated_db_session, monkeypatch):
    """Route the tasks' sessions to the isolated database."""

    @contextmanager
    def session_override():
        yield isolated_db_session
        isolated_db_session.commit()

    monkeypatch.setattr(cluster_tasks, "get_db_session", session_override)
    return isolated_db_session


@pytest.fixture
def configured(task_db):
    positions = {1: ModuleNode(0, 0), 2: ModuleNode(10, 0), 3: ModuleNode(100, 100), 4: ModuleNode(110, 100)}
    cluster_tasks.update_course_logs(1, EVENTS)
    return GraphService().save_configuration(1, "teacher", positions, task_db)


def test_update_course_logs(task_db):
    result = cluster_tasks.update_course_logs(1, EVENTS)

    assert result["status"] == "success"
    assert result["events_processed"] == 4
    assert result["last_sync"] == 103


def test_update_course_logs_with_bad_event(task_db):
    result = cluster_tasks.update_course_logs(1, [{"student_id": "s1", "time": 5}])

    assert result["status"] == "failed"
    assert result["course_id"] == 1


def test_start_clustering_run(configured):
    result = cluster_tasks.start_clustering_run(1, "teacher", configured, 2, seed=0)

    assert result["status"] == "success"
    assert result["finished"]
    assert result["run_id"] == 1


def test_start_clustering_run_without_configuration(task_db):
    result = cluster_tasks.start_clustering_run(1, "teacher", 4, 2)

    assert result["status"] == "failed"


def test_reconcile_course(configured):
    cluster_tasks.start_clustering_run(1, "teacher", configured, 2, seed=0)

    result = cluster_tasks.reconcile_course(1)

    assert result["status"] == "success"
    assert result["runs"] == 1
    assert result["iterations_added"] == 0


def test_periodic_reconcile_update_queues_every_course(task_db, monkeypatch):
    cluster_tasks.update_course_logs(1, EVENTS)
    cluster_tasks.update_course_logs(2, EVENTS)
    queued = []
    monkeypatch.setattr(cluster_tasks.reconcile_course, "delay", queued.append)

    result = cluster_tasks.periodic_reconcile_update()

    assert result["status"] == "success"
    assert result["course_ids"] == [1, 2]
    assert queued == [1, 2]


def test_check_clustering_alerts(task_db):
    result = cluster_tasks.check_clustering_alerts()

    assert result == {"status": "success", "alerts": {}, "total_alerts": 0}
