import pytest

from progress_backend.models.catalog_models import ModuleModel
from progress_backend.policies.reward_policy import RewardPolicy
from progress_backend.utils.base_types import ModuleId


@pytest.fixture
def policy() -> RewardPolicy:
    return RewardPolicy()


@pytest.mark.parametrize(
    "content_type,difficulty,duration,expected",
    [
        ("video", None, None, 10),
        ("lab", None, 10, 25),
        ("game", None, 30, 20),
        ("document", None, None, 5),
        ("podcast", None, None, 5),
        ("LAB", None, None, 25),
        ("video", "intermediate", None, 12),
        ("lab", "advanced", None, 38),
        ("game", "expert", None, 40),
        ("document", "beginner", None, 5),
        ("video", None, 31, 11),
        ("lab", "advanced", 45, 41),
        ("document", "intermediate", 60, 7),
    ],
)
def test_xp_for_content(policy: RewardPolicy, content_type, difficulty, duration, expected):
    assert policy.xp_for_content(content_type, difficulty, duration) == expected


@pytest.mark.parametrize(
    "difficulty,expected",
    [(None, 150), ("beginner", 150), ("intermediate", 195), ("advanced", 240), ("expert", 330)],
)
def test_xp_for_module_completion(policy: RewardPolicy, difficulty, expected):
    module = ModuleModel(moduleId=ModuleId("m1"), difficulty=difficulty)
    assert policy.xp_for_module_completion(module) == expected


def test_xp_for_module_completion_with_custom_base(policy: RewardPolicy):
    module = ModuleModel(moduleId=ModuleId("m1"), difficulty="advanced")
    assert policy.xp_for_module_completion(module, bonus_base=100) == 160


def test_xp_for_enrollment(policy: RewardPolicy):
    assert policy.xp_for_enrollment(ModuleModel(moduleId=ModuleId("m1"), difficulty="expert")) == 5


@pytest.mark.parametrize("total,expected", [(0, 1), (499, 1), (500, 2), (999, 2), (1000, 3), (-10, 1)])
def test_level_for_xp(policy: RewardPolicy, total, expected):
    assert policy.level_for_xp(total) == expected


def test_custom_tables():
    policy = RewardPolicy(content_xp={"video": 50}, unknown_content_xp=1, xp_per_level=100)
    assert policy.xp_for_content("video") == 50
    assert policy.xp_for_content("lab") == 1
    assert policy.level_for_xp(250) == 3


def test_from_env(monkeypatch):
    monkeypatch.setenv("XP_PER_LEVEL", "200")
    assert RewardPolicy.from_env().xp_per_level == 200
