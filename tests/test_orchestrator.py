import unittest
from decimal import Decimal

from solders.keypair import Keypair

from sona_wallet.chat.classifier import AssistantReply, ClassifierError, SendTokenAction
from sona_wallet.chat.orchestrator import (
    APOLOGY,
    ConversationOrchestrator,
    TurnState,
    default_build_retry,
    explorer_link,
)
from sona_wallet.chat.transcript import Transcript
from sona_wallet.core.events import EventBus
from sona_wallet.core.retry import RetryPolicy
from sona_wallet.errors import BuildError
from sona_wallet.storage.models import ChatRole
from sona_wallet.wallet.broadcast import BroadcastEngine
from sona_wallet.wallet.builder import TransactionBuilder
from sona_wallet.wallet.models import ConfirmationState, Direction, TransferStage
from sona_wallet.wallet.signer import KeypairSigner
from sona_wallet.wallet.store import WalletStateStore
from sona_wallet.wallet.validator import BalanceValidator

from tests.fakes import FakeRpc, ScriptedClassifier, default_assets, new_address


class OrchestratorTestCase(unittest.IsolatedAsyncioTestCase):
    approve = True

    async def asyncSetUp(self) -> None:
        self.rpc = FakeRpc()
        self.approvals = []

        async def approve(unsigned):
            self.approvals.append(unsigned)
            return self.approve

        self.signer = KeypairSigner(Keypair(), approve=approve)
        self.rpc.fund(self.signer.pubkey, sol=5, sonic=10)
        self.bus = EventBus()
        assets = default_assets()
        self.store = WalletStateStore(self.rpc, self.signer, assets, self.bus)
        self.engine = BroadcastEngine(self.rpc, self.store, self.bus, poll_interval=0.01, timeout=0.2)
        self.classifier = ScriptedClassifier()
        self.transcript = Transcript(bus=self.bus)
        self.orchestrator = ConversationOrchestrator(
            self.store,
            BalanceValidator(assets),
            TransactionBuilder(self.rpc, assets),
            self.engine,
            self.classifier,
            self.transcript,
            build_retry=RetryPolicy(
                max_attempts=2, retry_on=lambda exc: isinstance(exc, BuildError), name="build"
            ),
        )
        self.recipient = new_address()
        await self.store.connect()

    async def asyncTearDown(self) -> None:
        self.engine.close()
        await self.store.disconnect()

    def assistant_messages(self) -> list[str]:
        return [m.content for m in self.transcript.messages() if m.role is ChatRole.ASSISTANT]


class GeneralReplyTests(OrchestratorTestCase):
    async def test_general_question_gets_one_reply(self) -> None:
        self.classifier.replies.append(AssistantReply(content="Staking locks SOL to earn rewards."))

        replies = await self.orchestrator.handle_turn("What is staking?")

        self.assertEqual([r.content for r in replies], ["Staking locks SOL to earn rewards."])
        self.assertEqual([m.role for m in self.transcript.messages()], [ChatRole.USER, ChatRole.ASSISTANT])
        history, context = self.classifier.calls[0]
        self.assertEqual(history[-1].content, "What is staking?")
        self.assertEqual(context.identity, self.signer.pubkey)
        self.assertIs(self.orchestrator.last_turn.state, TurnState.APPENDED)

    async def test_classifier_failure_apologises(self) -> None:
        self.classifier.replies.append(ClassifierError("provider down"))

        replies = await self.orchestrator.handle_turn("hello")

        self.assertEqual([r.content for r in replies], [APOLOGY])

    async def test_parsed_command_skips_classifier(self) -> None:
        await self.orchestrator.handle_turn(f"send 1 SOL to {self.recipient}")
        self.assertEqual(self.classifier.calls, [])

    async def test_empty_message_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            await self.orchestrator.handle_turn("   ")
        self.assertEqual(len(self.transcript), 0)


class TransferPipelineTests(OrchestratorTestCase):
    async def test_native_round_trip(self) -> None:
        replies = await self.orchestrator.handle_turn(f"send 2 SOL to {self.recipient}")

        self.assertEqual(len(replies), 2)
        self.assertIn("Transaction successful", replies[0].content)
        signature = self.orchestrator.last_turn.transfer.signature
        self.assertIn(explorer_link("https://explorer.solana.com", signature, "testnet"), replies[1].content)

        snapshot = self.store.snapshot()
        self.assertEqual(snapshot.balance_of("SOL"), Decimal(3))
        record = snapshot.history[0]
        self.assertEqual(record.signature, signature)
        self.assertEqual(record.direction, Direction.OUT)
        self.assertEqual(record.amount, Decimal(2))
        self.assertEqual(record.state, ConfirmationState.CONFIRMED)
        self.assertEqual(self.rpc.lamports[self.recipient], 2_000_000_000)

    async def test_insufficient_token_balance(self) -> None:
        account_lookups = self.rpc.calls["get_account_info"]

        replies = await self.orchestrator.handle_turn(f"send 50 SONIC to {self.recipient}")

        self.assertEqual(len(replies), 1)
        self.assertIn("10 SONIC", replies[0].content)
        self.assertEqual(self.approvals, [])
        self.assertEqual(self.rpc.calls["send_transaction"], 0)
        # The builder never ran: no recipient account lookup, no blockhash
        self.assertEqual(self.rpc.calls["get_account_info"], account_lookups)
        self.assertEqual(self.rpc.calls["get_latest_blockhash"], 0)
        self.assertEqual(self.orchestrator.last_turn.transfer.stage, TransferStage.FAILED)

    async def test_invalid_recipient(self) -> None:
        replies = await self.orchestrator.handle_turn("send 1 SOL to abc")
        self.assertEqual(
            [r.content for r in replies],
            ["Invalid recipient address. Please provide a valid Solana address."],
        )

    async def test_user_rejection_stops_before_broadcast(self) -> None:
        self.approve = False
        balance_calls = self.rpc.calls["get_balance"]

        replies = await self.orchestrator.handle_turn(f"send 1 SOL to {self.recipient}")

        self.assertEqual(len(replies), 1)
        self.assertIn("rejected", replies[0].content)
        self.assertEqual(self.rpc.calls["send_transaction"], 0)
        self.assertEqual(self.rpc.calls["get_balance"], balance_calls)
        self.assertEqual(self.store.snapshot().history, ())
        self.assertEqual(self.orchestrator.last_turn.transfer.stage, TransferStage.FAILED)

    async def test_build_is_retried_once(self) -> None:
        self.rpc.fail_next("get_latest_blockhash")

        replies = await self.orchestrator.handle_turn(f"send 1 SOL to {self.recipient}")

        self.assertIn("Transaction successful", replies[0].content)
        self.assertEqual(self.rpc.calls["get_latest_blockhash"], 2)

    async def test_build_gives_up_after_retry(self) -> None:
        self.rpc.fail_next("get_latest_blockhash", times=2)

        replies = await self.orchestrator.handle_turn(f"send 1 SOL to {self.recipient}")

        self.assertEqual([r.content for r in replies], [BuildError().user_message()])
        self.assertEqual(self.rpc.calls["get_latest_blockhash"], 2)
        self.assertEqual(self.approvals, [])

    async def test_timeout_reports_unknown_status(self) -> None:
        self.rpc.outcome = "pending"

        replies = await self.orchestrator.handle_turn(f"send 1 SOL to {self.recipient}")

        self.assertEqual(len(replies), 1)
        self.assertIn("status is still unknown", replies[0].content)
        self.assertIn("explorer.solana.com/tx/", replies[0].content)

    async def test_interrupted_submission_links_the_explorer(self) -> None:
        self.rpc.fail_next("send_transaction")

        replies = await self.orchestrator.handle_turn(f"send 1 SOL to {self.recipient}")

        self.assertEqual(len(replies), 1)
        self.assertIn("status is unknown", replies[0].content)
        self.assertNotIn("No funds were moved", replies[0].content)
        signature = str(self.orchestrator.last_turn.transfer.signed.signatures[0])
        self.assertIn(f"explorer.solana.com/tx/{signature}", replies[0].content)

    async def test_on_chain_failure(self) -> None:
        self.rpc.outcome = "failed"

        replies = await self.orchestrator.handle_turn(f"send 1 SOL to {self.recipient}")

        self.assertEqual(len(replies), 1)
        self.assertIn("Transaction failed", replies[0].content)

    async def test_token_transfer_creates_recipient_account(self) -> None:
        replies = await self.orchestrator.handle_turn(f"send 4 SONIC to {self.recipient}")

        self.assertEqual(len(replies), 2)
        self.assertEqual(self.store.snapshot().balance_of("SONIC"), Decimal(6))

    async def test_classifier_action_runs_the_pipeline(self) -> None:
        self.classifier.replies.append(
            AssistantReply(
                content="Sending now.",
                action=SendTokenAction(token="sol", amount=Decimal("1.5"), recipient=self.recipient),
            )
        )

        replies = await self.orchestrator.handle_turn(f"could you move 1.5 sol over to {self.recipient}")

        self.assertIn("Transaction successful", replies[0].content)
        self.assertEqual(self.store.snapshot().balance_of("SOL"), Decimal("3.5"))

    async def test_classifier_action_with_unknown_asset(self) -> None:
        self.classifier.replies.append(
            AssistantReply(
                content="Sending.",
                action=SendTokenAction(token="BTC", amount=Decimal(1), recipient=self.recipient),
            )
        )

        replies = await self.orchestrator.handle_turn("send a bitcoin to my friend")

        self.assertEqual(len(replies), 1)
        self.assertIn("can't send BTC", replies[0].content)
        self.assertEqual(self.approvals, [])

    async def test_requires_connected_wallet(self) -> None:
        await self.store.disconnect()

        replies = await self.orchestrator.handle_turn(f"send 1 SOL to {self.recipient}")

        self.assertEqual([r.content for r in replies], ["Please connect your wallet before sending tokens."])


class DefaultsTests(unittest.TestCase):
    def test_default_build_retry_allows_one_retry_of_build_errors(self) -> None:
        policy = default_build_retry()
        self.assertEqual(policy.max_attempts, 2)
        self.assertTrue(policy.retry_on(BuildError("x")))
        self.assertFalse(policy.retry_on(ValueError("x")))

    def test_explorer_link(self) -> None:
        self.assertEqual(
            explorer_link("https://explorer.solana.com/", "abc", "testnet"),
            "https://explorer.solana.com/tx/abc?cluster=testnet",
        )
        self.assertEqual(
            explorer_link("https://explorer.solana.com", "abc", "mainnet-beta"),
            "https://explorer.solana.com/tx/abc",
        )


if __name__ == "__main__":
    unittest.main()
