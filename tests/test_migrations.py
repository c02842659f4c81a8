from pathlib import Path

import allure
from sqlalchemy import inspect, text

from persevere.jobs.repository import JobRepository

pytestmark = [
    allure.epic("Job Store"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = JobRepository(tmp_path / "migrations.db")
    repository.init_schema()
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
        user = connection.execute(
            text("SELECT user_id FROM users WHERE user_id = 'default_user'"),
        ).scalar_one_or_none()
    assert version == "20261018_0001"
    assert user == "default_user"

    inspector = inspect(repository.engine)
    assert {"users", "jobs", "job_steps"} <= set(inspector.get_table_names())
    unique = inspector.get_unique_constraints("job_steps")
    assert [sorted(item["column_names"]) for item in unique] == [["job_id", "step_order"]]
    repository.close()
