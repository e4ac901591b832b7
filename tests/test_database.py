import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sona_wallet.storage.database import Database, get_database
from sona_wallet.storage.models import ChatMessage, ChatRole, TransactionRow


def _row(signature: str, state: str = "submitted", minutes: int = 0) -> TransactionRow:
    return TransactionRow(
        signature=signature,
        wallet="wallet-1",
        asset="SOL",
        amount="1.5",
        direction="out",
        state=state,
        timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
    )


class DatabaseTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = Database(":memory:")
        await self.db.connect()

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_upsert_moves_state_only(self) -> None:
        await self.db.upsert_transaction(_row("a"))
        await self.db.upsert_transaction(_row("a", state="confirmed", minutes=5))

        rows = await self.db.get_transactions("wallet-1")

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].state, "confirmed")
        self.assertEqual(rows[0].timestamp, _row("a").timestamp)

    async def test_transactions_newest_first(self) -> None:
        await self.db.upsert_transaction(_row("old", minutes=0))
        await self.db.upsert_transaction(_row("new", minutes=10))

        rows = await self.db.get_transactions("wallet-1")

        self.assertEqual([r.signature for r in rows], ["new", "old"])
        self.assertEqual(await self.db.get_transactions("someone-else"), [])

    async def test_messages_in_order(self) -> None:
        await self.db.create_conversation("c1")
        for role, text in ((ChatRole.USER, "hi"), (ChatRole.ASSISTANT, "hello")):
            await self.db.add_message(ChatMessage(conversation_id="c1", role=role, content=text))

        messages = await self.db.get_messages("c1")

        self.assertEqual([m.content for m in messages], ["hi", "hello"])
        self.assertIsNotNone(messages[0].id)


class GetDatabaseTests(unittest.TestCase):
    def test_path(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            self.assertEqual(get_database(Path(tmp)).db_path, Path(tmp) / "sona.db")


if __name__ == "__main__":
    unittest.main()
