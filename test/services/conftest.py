import pytest

from progress_backend.dynamodb.catalog_table import CatalogTable
from progress_backend.dynamodb.enrollments_table import EnrollmentsTable
from progress_backend.dynamodb.user_achievements_table import UserAchievementsTable
from progress_backend.dynamodb.user_progress_table import UserProgressTable
from progress_backend.dynamodb.users_table import UsersTable
from progress_backend.services.engine import ProgressEngine
from progress_backend.utils.base_types import UserId

from test_utils.clock import FakeClock
from test_utils.tables import LEARNER_ID, TABLE_NAMES, build_catalog_table

USER = UserId(LEARNER_ID)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog(dynamodb_tables) -> CatalogTable:
    return build_catalog_table()


@pytest.fixture
def users_table(dynamodb_tables) -> UsersTable:
    table = UsersTable(TABLE_NAMES["users"])
    table.create_user(USER, username="learner", display_name="Learner One")
    return table


@pytest.fixture
def progress_table(dynamodb_tables) -> UserProgressTable:
    return UserProgressTable(TABLE_NAMES["progress"])


@pytest.fixture
def enrollments_table(dynamodb_tables) -> EnrollmentsTable:
    return EnrollmentsTable(TABLE_NAMES["enrollments"])


@pytest.fixture
def achievements_table(dynamodb_tables) -> UserAchievementsTable:
    return UserAchievementsTable(TABLE_NAMES["achievements"])


@pytest.fixture
def engine(
    catalog: CatalogTable,
    users_table: UsersTable,
    progress_table: UserProgressTable,
    enrollments_table: EnrollmentsTable,
    achievements_table: UserAchievementsTable,
    clock: FakeClock,
) -> ProgressEngine:
    return ProgressEngine(
        catalog_table=catalog,
        progress_table=progress_table,
        enrollments_table=enrollments_table,
        achievements_table=achievements_table,
        users_table=users_table,
        clock=clock,
    )
