"""Conversation orchestrator: turns chat messages into replies and transfers.

Each user turn moves through ``RECEIVED -> CLASSIFYING -> GENERAL_REPLY |
TRANSFER_PIPELINE -> APPENDED``. A turn always ends with exactly one
assistant message, plus an optional follow-up after a confirmed transfer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from sona_wallet.chat.classifier import IntentClassifier, SendTokenAction
from sona_wallet.chat.parser import parse_command
from sona_wallet.chat.transcript import Transcript
from sona_wallet.core.events import TRANSFER_STAGE, EventBus
from sona_wallet.core.retry import RetryPolicy
from sona_wallet.errors import (
    BuildError,
    SignerUnavailable,
    SubmissionUncertain,
    WalletError,
    WalletNotConnected,
    format_amount,
)
from sona_wallet.storage.models import ChatMessage, ChatRole
from sona_wallet.wallet.broadcast import BroadcastEngine
from sona_wallet.wallet.builder import TransactionBuilder
from sona_wallet.wallet.models import ConfirmationStatus, Intent, TransferRequest, TransferStage
from sona_wallet.wallet.store import WalletStateStore
from sona_wallet.wallet.validator import BalanceValidator

logger = logging.getLogger("sona_wallet.chat.orchestrator")

APOLOGY = "I apologize, but I encountered an error. Please try again."


class TurnState(str, Enum):
    RECEIVED = "received"
    CLASSIFYING = "classifying"
    GENERAL_REPLY = "general_reply"
    TRANSFER_PIPELINE = "transfer_pipeline"
    APPENDED = "appended"


@dataclass
class Turn:
    text: str
    state: TurnState = TurnState.RECEIVED
    intent: Intent | None = None
    transfer: TransferRequest | None = None
    replies: list[str] = field(default_factory=list)

    def move(self, state: TurnState) -> None:
        logger.debug(f"Turn {self.state.value} -> {state.value}")
        self.state = state


def explorer_link(explorer_url: str, signature: str, cluster: str | None = None) -> str:
    """Block explorer URL for *signature*."""
    link = f"{explorer_url.rstrip('/')}/tx/{signature}"
    if cluster and cluster != "mainnet-beta":
        link += f"?cluster={cluster}"
    return link


def default_build_retry() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=2,
        backoff=(0.5,),
        retry_on=lambda exc: isinstance(exc, BuildError),
        name="build",
    )


class ConversationOrchestrator:
    """Sequences parser, classifier and the transfer pipeline for each turn.

    Parameters
    ----------
    store:
        Wallet state store; the source of the snapshot and the signer.
    validator, builder, engine:
        Transfer pipeline stages, run strictly in order.
    classifier:
        Collaborator that answers messages the parser does not recognise.
    transcript:
        Where user and assistant messages are appended.
    build_retry:
        Retry policy for the builder stage. Nothing else is retried.
    """

    def __init__(
        self,
        store: WalletStateStore,
        validator: BalanceValidator,
        builder: TransactionBuilder,
        engine: BroadcastEngine,
        classifier: IntentClassifier,
        transcript: Transcript,
        *,
        bus: EventBus | None = None,
        build_retry: RetryPolicy | None = None,
        explorer_url: str = "https://explorer.solana.com",
        cluster: str | None = "testnet",
    ) -> None:
        self.store = store
        self.validator = validator
        self.builder = builder
        self.engine = engine
        self.classifier = classifier
        self.transcript = transcript
        self.bus = bus or store.bus
        self.build_retry = build_retry or default_build_retry()
        self.explorer_url = explorer_url
        self.cluster = cluster
        self.last_turn: Turn | None = None

    @property
    def symbols(self) -> list[str]:
        return self.store.assets.symbols()

    async def handle_turn(self, text: str) -> list[ChatMessage]:
        """Process one user message and return the assistant messages appended."""
        text = text.strip()
        if not text:
            raise ValueError("Message must not be empty")

        turn = Turn(text=text)
        self.last_turn = turn
        await self.transcript.append(ChatRole.USER, text)

        try:
            await self._route(turn)
        except Exception:
            logger.exception("Unhandled error while processing a chat turn")
            turn.replies = [APOLOGY]

        if not turn.replies:
            turn.replies = [APOLOGY]
        appended = [
            await self.transcript.append(ChatRole.ASSISTANT, content)
            for content in turn.replies
        ]
        turn.move(TurnState.APPENDED)
        return appended

    async def _route(self, turn: Turn) -> None:
        turn.intent = parse_command(turn.text, self.symbols)
        if turn.intent is None:
            turn.move(TurnState.CLASSIFYING)
            try:
                reply = await self.classifier.classify(
                    self.transcript.history(), self.store.snapshot()
                )
            except Exception as exc:
                logger.error(f"Intent classification failed: {exc}")
                turn.move(TurnState.GENERAL_REPLY)
                turn.replies = [APOLOGY]
                return

            if reply.action is None:
                turn.move(TurnState.GENERAL_REPLY)
                turn.replies = [reply.content]
                return

            turn.intent, problem = self._intent_from_action(reply.action)
            if turn.intent is None:
                turn.move(TurnState.GENERAL_REPLY)
                turn.replies = [problem]
                return

        turn.move(TurnState.TRANSFER_PIPELINE)
        turn.replies = await self._run_transfer(turn)

    def _intent_from_action(self, action: SendTokenAction) -> tuple[Intent | None, str]:
        token = action.token.upper()
        if token not in self.store.assets:
            return None, f"I can't send {token}. Supported assets are: {', '.join(self.symbols)}."
        try:
            return Intent(asset=token, amount=action.amount, recipient=action.recipient), ""
        except ValueError:
            return None, "Please specify a positive amount to send."

    # ------------------------------------------------------------------
    # Transfer pipeline
    # ------------------------------------------------------------------

    async def _run_transfer(self, turn: Turn) -> list[str]:
        intent = turn.intent
        assert intent is not None
        snapshot = self.store.snapshot()
        if not snapshot.connected:
            return [WalletNotConnected().user_message()]

        request = TransferRequest(intent=intent, sender=snapshot.identity)
        turn.transfer = request
        logger.info(f"Starting transfer of {intent.describe()}")

        try:
            self.validator.validate(intent, snapshot)
            await self._advance(request, TransferStage.VALIDATED)

            request.unsigned = await self.build_retry.run(
                self.builder.build, intent, request.sender
            )
            await self._advance(request, TransferStage.BUILT)

            signer = self.store.signer
            if signer is None:
                raise SignerUnavailable("No wallet signer is installed")
            request.signed = await signer.sign_transaction(request.unsigned)
            await self._advance(request, TransferStage.SIGNED)

            outcome = await self.engine.execute(request)
        except WalletError as exc:
            if not request.stage.is_terminal:
                request.fail(exc)
            logger.warning(f"Transfer of {intent.describe()} stopped: {exc}")
            if isinstance(exc, SubmissionUncertain) and exc.signature:
                link = explorer_link(self.explorer_url, exc.signature, self.cluster)
                return [f"{exc.user_message()}\nView it on the explorer: {link}"]
            return [exc.user_message()]

        signature = request.signature
        link = explorer_link(self.explorer_url, signature, self.cluster)
        if outcome is ConfirmationStatus.CONFIRMED:
            return [
                f"Transaction successful! Sent {format_amount(intent.amount)} {intent.asset} "
                f"to {intent.recipient}.",
                f"Signature: {signature}\nView it on the explorer: {link}",
            ]
        return [
            f"Your transaction was submitted but its status is still unknown. "
            f"Check the explorer before trying again: {link}"
        ]

    async def _advance(self, request: TransferRequest, stage: TransferStage) -> None:
        request.advance(stage)
        await self.bus.publish(TRANSFER_STAGE, intent=request.intent.describe(), stage=stage.value)
