from pathlib import Path

import allure
from sqlalchemy import text

from transcript_pipeline.queue.repository import TaskRepository

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = TaskRepository(tmp_path / "migrations.db")
    repository.init_schema()
    # Running again is a no-op at head.
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
        tables = connection.execute(
            text(
                """
                SELECT name
                FROM sqlite_master
                WHERE type = 'table'
                  AND name IN ('transcription_jobs', 'task_queue', 'task_events')
                ORDER BY name
                """,
            ),
        ).scalars()
        table_names = list(tables)
        merge_index_sql = connection.execute(
            text(
                "SELECT sql FROM sqlite_master "
                "WHERE type = 'index' AND name = 'uq_task_queue_merge_parent'",
            ),
        ).scalar_one()
        journal_mode = connection.execute(text("PRAGMA journal_mode")).scalar_one()
        foreign_keys = connection.execute(text("PRAGMA foreign_keys")).scalar_one()

    assert version == "20261018_0002"
    assert table_names == ["task_events", "task_queue", "transcription_jobs"]
    assert "UNIQUE" in merge_index_sql.upper()
    assert "WHERE" in merge_index_sql.upper()
    assert str(journal_mode).lower() == "wal"
    assert foreign_keys == 1
    repository.close()
