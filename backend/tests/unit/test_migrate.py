import contextlib

import pytest

from dsync.infra.migrate import MIGRATIONS_DIR, apply_migrations


class FakeConnection:
    def __init__(self, applied=()):
        self.applied = list(applied)
        self.executed = []

    async def execute(self, sql, *args):
        self.executed.append(sql.strip())
        if args:
            self.applied.append(args[0])

    async def fetch(self, sql):
        return [{"version": version} for version in self.applied]

    def transaction(self):
        @contextlib.asynccontextmanager
        async def _tx():
            yield

        return _tx()


@pytest.mark.asyncio
async def test_applies_only_pending_migrations(tmp_path):
    (tmp_path / "0001_base.sql").write_text("CREATE TABLE a (id int);")
    (tmp_path / "0002_more.sql").write_text("CREATE TABLE b (id int);")
    conn = FakeConnection(applied=["0001"])

    done = await apply_migrations(conn, tmp_path)

    assert done == ["0002"]
    assert "CREATE TABLE b (id int);" in conn.executed
    assert "CREATE TABLE a (id int);" not in conn.executed


@pytest.mark.asyncio
async def test_empty_directory_aborts(tmp_path):
    with pytest.raises(SystemExit):
        await apply_migrations(FakeConnection(), tmp_path)


def test_bundled_schema_defines_chat_tables():
    schema = (MIGRATIONS_DIR / "0001_chat_sync.sql").read_text()

    for table in ("chats", "chat_members", "messages", "message_likes", "message_receipts"):
        assert f"CREATE TABLE IF NOT EXISTS {table}" in schema
    assert "UNIQUE (chat_id, client_msg_id)" in schema
