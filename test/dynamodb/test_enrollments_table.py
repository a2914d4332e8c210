import pytest

from progress_backend.dynamodb.enrollments_table import EnrollmentsTable
from progress_backend.dynamodb.users_table import UsersTable
from progress_backend.models.enrollment_models import EnrollmentModel
from progress_backend.utils.base_types import IsoTimestamp, ModuleId, UserId

from test_utils.tables import TABLE_NAMES

USER = UserId("user-1")
MODULE = ModuleId("m1")
NOW = IsoTimestamp("2025-06-03T10:00:00+00:00")
LATER = IsoTimestamp("2025-06-04T10:00:00+00:00")


@pytest.fixture
def users_table(dynamodb_tables) -> UsersTable:
    table = UsersTable(TABLE_NAMES["users"])
    table.create_user(USER)
    return table


@pytest.fixture
def enrollments_table(dynamodb_tables, users_table) -> EnrollmentsTable:
    table = EnrollmentsTable(TABLE_NAMES["enrollments"])
    enrollment = EnrollmentModel(userId=USER, moduleId=MODULE, totalSections=4, enrolledAt=NOW, lastAccessedAt=NOW)
    assert users_table.add_xp_with_guard(USER, 5, table.build_create_enrollment_put(enrollment))
    return table


def test_get_and_list(enrollments_table: EnrollmentsTable):
    enrollment = enrollments_table.get_enrollment(USER, MODULE)
    assert enrollment.status == "active"
    assert enrollment.totalSections == 4
    assert enrollment.progressPercentage == 0

    assert [e.moduleId for e in enrollments_table.list_for_user(USER)] == ["m1"]
    assert enrollments_table.list_for_user(USER, status="completed") == []
    assert enrollments_table.count_enrollments(USER) == 1
    assert enrollments_table.count_completed_enrollments(USER) == 0


def test_update_counts(enrollments_table: EnrollmentsTable):
    updated = enrollments_table.update_counts(USER, MODULE, 4, 1, 25, LATER, expected_version=0)
    assert updated.completedSections == 1
    assert updated.progressPercentage == 25
    assert updated.lastAccessedAt == LATER
    assert updated.enrolledAt == NOW
    assert updated.version == 1


def test_update_counts_rejects_stale_version(enrollments_table: EnrollmentsTable):
    assert enrollments_table.update_counts(USER, MODULE, 4, 2, 50, LATER, expected_version=0).version == 1

    # A count taken against version 0 must not overwrite the newer one.
    assert enrollments_table.update_counts(USER, MODULE, 4, 1, 25, LATER, expected_version=0) is None
    enrollment = enrollments_table.get_enrollment(USER, MODULE)
    assert enrollment.completedSections == 2
    assert enrollment.version == 1


def test_update_counts_without_enrollment(enrollments_table: EnrollmentsTable):
    assert enrollments_table.update_counts(USER, ModuleId("other"), 4, 1, 25, LATER, expected_version=0) is None
    assert enrollments_table.get_enrollment(USER, ModuleId("other")) is None


def test_completion_guard_needs_full_progress(enrollments_table: EnrollmentsTable, users_table: UsersTable):
    guard = enrollments_table.build_completion_guard(USER, MODULE, 150, LATER)
    assert users_table.add_xp_with_guard(USER, 150, guard) is False

    enrollments_table.update_counts(USER, MODULE, 4, 4, 100, LATER, expected_version=0)
    assert users_table.add_xp_with_guard(USER, 150, guard) is True
    assert users_table.add_xp_with_guard(USER, 150, guard) is False

    enrollment = enrollments_table.get_enrollment(USER, MODULE)
    assert enrollment.status == "completed"
    assert enrollment.completionBonusAwardedAt == LATER
    assert enrollment.completionBonusXp == 150
    assert enrollment.version == 2
    assert users_table.get_user(USER).totalXP == 155


def test_transition_status(enrollments_table: EnrollmentsTable):
    paused = enrollments_table.transition_status(USER, MODULE, ["active"], "paused", LATER)
    assert paused.status == "paused"
    assert paused.version == 1
    assert enrollments_table.transition_status(USER, MODULE, ["active"], "paused", LATER) is None

    completed = enrollments_table.transition_status(USER, MODULE, ["active", "paused"], "completed", LATER)
    assert completed.status == "completed"
    assert completed.progressPercentage == 100
    assert completed.completedSections == 0
    assert completed.completedAt == LATER
    assert completed.version == 2


def test_transition_status_missing_enrollment(enrollments_table: EnrollmentsTable):
    assert enrollments_table.transition_status(USER, ModuleId("other"), ["active"], "paused", LATER) is None
    assert enrollments_table.get_enrollment(USER, ModuleId("other")) is None


def test_mark_unenrolled_keeps_the_record(enrollments_table: EnrollmentsTable):
    assert enrollments_table.mark_unenrolled(USER, MODULE, LATER) is True
    assert enrollments_table.mark_unenrolled(USER, MODULE, LATER) is False
    assert enrollments_table.mark_unenrolled(USER, ModuleId("other"), LATER) is False

    enrollment = enrollments_table.get_enrollment(USER, MODULE)
    assert enrollment.is_unenrolled
    assert enrollment.unenrolledAt == LATER
    assert enrollments_table.list_for_user(USER) == []
    assert enrollments_table.count_enrollments(USER) == 0

    # Unenrolled records take no further writes.
    assert enrollments_table.update_counts(USER, MODULE, 4, 1, 25, LATER, expected_version=enrollment.version) is None
    assert enrollments_table.transition_status(USER, MODULE, ["active"], "paused", LATER) is None


def test_reactivate(enrollments_table: EnrollmentsTable):
    assert enrollments_table.reactivate(USER, MODULE, "active", LATER, expected_version=0) is None

    enrollments_table.mark_unenrolled(USER, MODULE, LATER)
    unenrolled = enrollments_table.get_enrollment(USER, MODULE)

    assert enrollments_table.reactivate(USER, MODULE, "active", LATER, expected_version=unenrolled.version + 1) is None
    reactivated = enrollments_table.reactivate(USER, MODULE, "active", LATER, expected_version=unenrolled.version)
    assert reactivated.unenrolledAt is None
    assert reactivated.status == "active"
    assert reactivated.enrolledAt == LATER
    assert [e.moduleId for e in enrollments_table.list_for_user(USER)] == ["m1"]


def test_scan_for_module(enrollments_table: EnrollmentsTable, users_table: UsersTable):
    other = UserId("user-2")
    users_table.create_user(other)
    enrollment = EnrollmentModel(userId=other, moduleId=MODULE, enrolledAt=NOW, lastAccessedAt=NOW)
    users_table.add_xp_with_guard(other, 5, enrollments_table.build_create_enrollment_put(enrollment))
    elsewhere = EnrollmentModel(userId=other, moduleId=ModuleId("m2"), enrolledAt=NOW, lastAccessedAt=NOW)
    users_table.add_xp_with_guard(other, 5, enrollments_table.build_create_enrollment_put(elsewhere))

    assert sorted(e.userId for e in enrollments_table.scan_for_module(MODULE)) == ["user-1", "user-2"]

    enrollments_table.mark_unenrolled(other, MODULE, LATER)
    assert [e.userId for e in enrollments_table.scan_for_module(MODULE)] == ["user-1"]
