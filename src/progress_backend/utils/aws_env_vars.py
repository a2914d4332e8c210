import os


def _get_resource_by_env_var(env_var: str) -> str:
    table_name = os.environ.get(env_var)
    if not table_name:
        raise ValueError(f"Missing environment variable: {env_var}")
    return table_name


def _get_int_env_var(env_var: str, default: int) -> int:
    raw = os.environ.get(env_var, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{env_var} must be an integer (got {raw!r})") from None


def get_aws_region() -> str:
    return _get_resource_by_env_var("AWS_REGION")


def get_catalog_modules_table_name() -> str:
    return _get_resource_by_env_var("CATALOG_MODULES_TABLE_NAME")


def get_catalog_content_table_name() -> str:
    return _get_resource_by_env_var("CATALOG_CONTENT_TABLE_NAME")


def get_user_progress_table_name() -> str:
    return _get_resource_by_env_var("USER_PROGRESS_TABLE_NAME")


def get_enrollments_table_name() -> str:
    return _get_resource_by_env_var("ENROLLMENTS_TABLE_NAME")


def get_user_achievements_table_name() -> str:
    return _get_resource_by_env_var("USER_ACHIEVEMENTS_TABLE_NAME")


def get_users_table_name() -> str:
    return _get_resource_by_env_var("USERS_TABLE_NAME")


def get_xp_per_level() -> int:
    """
    XP needed per level. Product policy rather than an invariant, so it is configurable.
    """
    value = _get_int_env_var("XP_PER_LEVEL", 500)
    if value <= 0:
        raise ValueError(f"XP_PER_LEVEL must be positive (got {value})")
    return value


def get_video_completion_threshold() -> int:
    value = _get_int_env_var("VIDEO_COMPLETION_THRESHOLD", 90)
    if not 1 <= value <= 100:
        raise ValueError(f"VIDEO_COMPLETION_THRESHOLD must be within 1-100 (got {value})")
    return value


def get_metrics_namespace() -> str:
    return os.environ.get("METRICS_NAMESPACE", "LearningProgress/Rewards")
