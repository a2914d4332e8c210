import pytest

from progress_backend.dynamodb.catalog_table import CatalogTable
from progress_backend.dynamodb.users_table import UsersTable
from progress_backend.services.engine import ProgressEngine
from progress_backend.utils.base_types import ModuleId, UserId
from progress_backend.utils.errors import ResourceNotFoundError

from test_utils.tables import LEARNER_ID, seed_module

USER = UserId(LEARNER_ID)


def test_overall_progress_for_new_user(engine: ProgressEngine):
    overall = engine.projections.overall_progress(USER)

    assert overall.totalEnrollments == 0
    assert overall.enrollmentsByStatus == {"active": 0, "paused": 0, "completed": 0, "dropped": 0}
    assert overall.averageProgress == 0
    assert overall.completedContent == 0
    assert overall.totalXP == 0
    assert overall.level == 1
    assert overall.enrollments == []


def test_overall_progress(engine: ProgressEngine, catalog: CatalogTable):
    m1 = seed_module(catalog, "m1", ["document", "document", "document"])
    m2 = seed_module(catalog, "m2", ["lab", "lab"])
    engine.aggregator.enroll(USER, ModuleId("m1"))
    engine.aggregator.enroll(USER, ModuleId("m2"))
    engine.aggregator.pause(USER, ModuleId("m2"))

    engine.tracker.complete(USER, m1[0], time_spent=120)
    engine.tracker.update_progress(USER, m1[1], 40, time_spent=30)
    engine.tracker.complete(USER, m2[0])

    overall = engine.projections.overall_progress(USER)

    assert overall.totalEnrollments == 2
    assert overall.enrollmentsByStatus["active"] == 1
    assert overall.enrollmentsByStatus["paused"] == 1
    # (33 + 50) / 2 rounds half up
    assert overall.averageProgress == 42
    assert overall.completedContent == 2
    assert overall.inProgressContent == 1
    assert overall.totalTimeSpent == 150
    assert overall.totalXP == engine.ledger.get_total_xp(USER)
    assert [e.moduleId for e in overall.enrollments] == ["m1", "m2"]


def test_module_progress(engine: ProgressEngine, catalog: CatalogTable):
    items = seed_module(catalog, "m1", ["video", "lab", "game", "lab"])
    engine.tracker.complete(USER, items[1], score=8, max_score=10, time_spent=300)
    engine.tracker.update_progress(USER, items[0], 50, time_spent=60)

    view = engine.projections.module_progress(USER, ModuleId("m1"))

    assert view.moduleTitle == "Module m1"
    assert view.enrollmentStatus is None
    assert view.totalSections == 4
    assert view.completedSections == 1
    assert view.progressPercentage == 25
    assert view.totalTimeSpent == 360
    assert view.contentTypeProgress["lab"].model_dump() == {"completed": 1, "total": 2}
    assert view.contentTypeProgress["video"].model_dump() == {"completed": 0, "total": 1}
    assert [i.contentId for i in view.items] == items
    assert view.items[0].status == "in-progress"
    assert view.items[1].score == 8
    assert view.items[1].isCompleted is True
    assert view.items[2].status == "not-started"


def test_module_progress_unknown_module(engine: ProgressEngine):
    with pytest.raises(ResourceNotFoundError):
        engine.projections.module_progress(USER, ModuleId("missing"))


def test_module_progress_ignores_unenrolled(engine: ProgressEngine, catalog: CatalogTable):
    seed_module(catalog, "m1", ["lab"])
    engine.aggregator.enroll(USER, ModuleId("m1"))
    engine.aggregator.unenroll(USER, ModuleId("m1"))

    assert engine.projections.module_progress(USER, ModuleId("m1")).enrollmentStatus is None
    assert engine.projections.overall_progress(USER).totalEnrollments == 0


def test_module_stats_across_learners(engine: ProgressEngine, catalog: CatalogTable, users_table: UsersTable):
    other = UserId("learner-2")
    idle = UserId("learner-3")
    users_table.create_user(other)
    users_table.create_user(idle)
    items = seed_module(catalog, "m1", ["video", "lab"])
    seed_module(catalog, "m2", ["lab"])

    engine.aggregator.enroll(USER, ModuleId("m1"))
    engine.tracker.complete(USER, items[0], time_spent=100)
    engine.tracker.complete(USER, items[1], time_spent=300)
    engine.aggregator.enroll(other, ModuleId("m1"))
    engine.tracker.update_progress(other, items[1], 40, time_spent=50)
    engine.aggregator.enroll(idle, ModuleId("m1"))
    engine.aggregator.drop(idle, ModuleId("m1"))
    engine.aggregator.enroll(other, ModuleId("m2"))

    stats = engine.projections.module_progress_stats(ModuleId("m1"))

    assert stats.moduleTitle == "Module m1"
    assert stats.totalEnrollments == 3
    assert stats.totalContent == 2
    assert stats.progressByStatus.model_dump() == {"completed": 2, "inProgress": 1, "notStarted": 0}
    assert stats.completionRateByType == {"video": 100, "lab": 50, "game": 0, "document": 0}
    assert stats.averageTimeSpentByType == {"video": 100, "lab": 175, "game": 0, "document": 0}
    assert [(s.userId, s.progressPercentage, s.completedContent, s.totalTimeSpent) for s in stats.learners] == [
        (USER, 100, 2, 400),
        (other, 0, 0, 50),
        (idle, 0, 0, 0),
    ]
    assert stats.learners[0].enrollmentStatus == "completed"
    assert stats.learners[2].enrollmentStatus == "dropped"

    enrollment_stats = engine.projections.module_enrollment_stats(ModuleId("m1"))

    assert enrollment_stats.totalEnrollments == 3
    assert enrollment_stats.enrollmentsByStatus == {"active": 1, "paused": 0, "completed": 1, "dropped": 1}
    # (100 + 0 + 0) / 3
    assert enrollment_stats.averageProgress == 33
    assert enrollment_stats.completionRate == 33


def test_module_stats_without_enrollments(engine: ProgressEngine, catalog: CatalogTable):
    seed_module(catalog, "m1", ["game"])

    stats = engine.projections.module_progress_stats(ModuleId("m1"))
    assert stats.totalEnrollments == 0
    assert stats.learners == []
    assert stats.completionRateByType["game"] == 0

    enrollment_stats = engine.projections.module_enrollment_stats(ModuleId("m1"))
    assert enrollment_stats.averageProgress == 0
    assert enrollment_stats.completionRate == 0


def test_module_stats_unknown_module(engine: ProgressEngine):
    with pytest.raises(ResourceNotFoundError):
        engine.projections.module_progress_stats(ModuleId("missing"))
    with pytest.raises(ResourceNotFoundError):
        engine.projections.module_enrollment_stats(ModuleId("missing"))
