import asyncio
import unittest

from solders.keypair import Keypair

from sona_wallet.config import AppConfig
from sona_wallet.core.session import WalletChatSession
from sona_wallet.storage.database import Database
from sona_wallet.storage.models import ChatRole
from sona_wallet.wallet.signer import KeypairSigner

from tests.fakes import FakeRpc, ScriptedClassifier, new_address


async def _eventually(check, attempts: int = 100) -> None:
    for _ in range(attempts):
        if await check():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


class WalletChatSessionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        config = AppConfig()
        config.confirmation.poll_interval_seconds = 0.01
        config.confirmation.timeout_seconds = 0.5
        config.retry.backoff_seconds = [0.0]

        self.db = Database(":memory:")
        await self.db.connect()
        self.rpc = FakeRpc()
        self.signer = KeypairSigner(Keypair())
        self.rpc.fund(self.signer.pubkey, sol=5, sonic=10)
        self.session = WalletChatSession(
            config, self.db, self.rpc, self.signer, classifier=ScriptedClassifier()
        )
        await self.session.transcript.load()

    async def asyncTearDown(self) -> None:
        await self.session.shutdown()

    async def test_transfer_is_persisted(self) -> None:
        await self.session.connect()
        replies = await self.session.chat(f"send 1 SOL to {new_address()}")
        self.assertIn("Transaction successful", replies[0].content)

        async def confirmed():
            rows = await self.session.transactions()
            return len(rows) == 1 and rows[0]["state"] == "confirmed"

        await _eventually(confirmed)
        rows = await self.session.transactions()
        self.assertEqual(rows[0]["asset"], "SOL")
        self.assertEqual(rows[0]["direction"], "out")
        self.assertEqual(rows[0]["wallet"], self.signer.pubkey)

    async def test_messages_are_persisted(self) -> None:
        await self.session.chat(f"send 1 SOL to {new_address()}")

        stored = await self.db.get_messages(self.session.transcript.conversation_id)

        self.assertEqual([m.role for m in stored], [ChatRole.USER, ChatRole.ASSISTANT])
        self.assertEqual(stored[1].content, "Please connect your wallet before sending tokens.")

    async def test_status(self) -> None:
        status = self.session.status()
        self.assertEqual(status["assets"], ["SOL", "SONIC"])
        self.assertFalse(status["wallet"]["connected"])
        self.assertEqual(status["signer"], "none")

    async def test_transactions_empty_when_disconnected(self) -> None:
        self.assertEqual(await self.session.transactions(), [])


if __name__ == "__main__":
    unittest.main()
