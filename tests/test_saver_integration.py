import psycopg
import pytest
from psycopg.rows import dict_row

from config.postgres import PostgresConfig
from onboarding.submission import SubmissionCoordinator
from persistence.crypto import ChannelCipher
from persistence.encrypted_postgres_saver import EncryptedAsyncPostgresSaver

pytestmark = pytest.mark.skipif(
    not PostgresConfig.is_configured(), reason="PG_* environment not configured"
)


@pytest.mark.asyncio
async def test_encryption_in_db_and_plaintext_on_read(backend, validator, complete_record):
    pg = PostgresConfig.from_env()

    async with await psycopg.AsyncConnection.connect(
        pg.conninfo, autocommit=True, prepare_threshold=0, row_factory=dict_row
    ) as conn:
        checkpointer = EncryptedAsyncPostgresSaver(conn, ChannelCipher.from_env())
        await checkpointer.setup()

        coordinator = SubmissionCoordinator(backend, validator, checkpointer=checkpointer)
        result = await coordinator.submit(
            complete_record,
            {"phone_e164": "+447912345678", "full_name": "Jane Doe"},
            thread_id="pytest_thread",
        )
        assert result.ok

        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT encode(blob, 'escape') AS blob
                FROM checkpoint_blobs
                WHERE thread_id = %s AND channel = 'record'
                ORDER BY version DESC
                LIMIT 1
                """,
                ("pytest_thread",),
            )
            row = await cur.fetchone()
        assert row is not None
        assert "__enc__" in row["blob"]
        assert "Passw0rd!" not in row["blob"]

        latest = await coordinator.graph.aget_state({"configurable": {"thread_id": "pytest_thread"}})
        assert latest.values["record"].password == "Passw0rd!"
        assert latest.values["account"].username == "janedoe"
