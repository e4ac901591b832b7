"""WalletChatSession - wires the wallet core, the chat layer and storage."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from sona_wallet.chat.classifier import IntentClassifier, LLMIntentClassifier
from sona_wallet.chat.orchestrator import ConversationOrchestrator
from sona_wallet.chat.transcript import Transcript
from sona_wallet.config import AppConfig, get_root_dir, load_config, save_config
from sona_wallet.core.events import WALLET_TRANSACTION, Event, EventBus
from sona_wallet.core.retry import RetryPolicy
from sona_wallet.errors import BuildError, SignerUnavailable
from sona_wallet.llm.router import LLMRouter
from sona_wallet.storage.database import Database, get_database
from sona_wallet.storage.models import ChatMessage, TransactionRow
from sona_wallet.wallet.assets import AssetRegistry
from sona_wallet.wallet.broadcast import BroadcastEngine
from sona_wallet.wallet.builder import TransactionBuilder
from sona_wallet.wallet.models import WalletSession
from sona_wallet.wallet.rpc import SolanaRpcClient
from sona_wallet.wallet.signer import SignerGateway, load_signer
from sona_wallet.wallet.store import WalletStateStore
from sona_wallet.wallet.validator import BalanceValidator

logger = logging.getLogger("sona_wallet.session")


class WalletChatSession:
    """One user's chat session against one wallet.

    Owns the single :class:`WalletStateStore` and injects it into every
    component that reads wallet state.
    """

    def __init__(
        self,
        config: AppConfig,
        db: Database,
        rpc: SolanaRpcClient,
        signer: SignerGateway | None,
        classifier: IntentClassifier | None = None,
        root_dir: Path | None = None,
    ):
        self.config = config
        self.root_dir = root_dir
        self.db = db
        self.rpc = rpc
        self.bus = EventBus()
        self.assets = AssetRegistry.from_config(config.assets)

        self.store = WalletStateStore(
            rpc,
            signer,
            self.assets,
            self.bus,
            refresh_interval=config.wallet.refresh_interval_seconds,
            history_capacity=config.wallet.history_capacity,
        )
        self.engine = BroadcastEngine(
            rpc,
            self.store,
            self.bus,
            commitment=config.confirmation.commitment,
            poll_interval=config.confirmation.poll_interval_seconds,
            timeout=config.confirmation.timeout_seconds,
        )
        self.classifier = classifier or LLMIntentClassifier(
            LLMRouter(config.llm), self.assets, name=config.name
        )
        self.transcript = Transcript(db=db, bus=self.bus)
        self.orchestrator = ConversationOrchestrator(
            self.store,
            BalanceValidator(self.assets),
            TransactionBuilder(rpc, self.assets),
            self.engine,
            self.classifier,
            self.transcript,
            bus=self.bus,
            build_retry=RetryPolicy(
                max_attempts=config.retry.builder_max_attempts,
                backoff=tuple(config.retry.backoff_seconds),
                retry_on=lambda exc: isinstance(exc, BuildError),
                name="build",
            ),
            explorer_url=config.chain.explorer_url,
            cluster=config.chain.cluster,
        )

        # Persist every history change
        self._tx_subscription = self.bus.subscribe(WALLET_TRANSACTION, self._on_transaction)

    @classmethod
    async def load(cls, base_path: Path | None = None) -> WalletChatSession:
        """Open the session configured in ``.sona-wallet/config.yaml``."""
        root_dir = get_root_dir(base_path)
        config_path = root_dir / "config.yaml"
        if not config_path.exists():
            raise FileNotFoundError(
                f"No configuration found at {root_dir}. Run 'sona-wallet init' first."
            )

        config = load_config(config_path)
        db = get_database(root_dir)
        await db.connect()

        rpc = SolanaRpcClient(
            config.chain.rpc_url,
            commitment=config.chain.commitment,
            timeout=config.chain.request_timeout,
        )
        try:
            signer = load_signer(config.signer)
        except SignerUnavailable as e:
            logger.warning(f"Signer not available: {e}")
            signer = None

        session = cls(config=config, db=db, rpc=rpc, signer=signer, root_dir=root_dir)
        await session.transcript.load()
        return session

    @classmethod
    async def init(cls, base_path: Path | None = None, name: str = "Sona") -> WalletChatSession:
        """Write a default configuration and open a session on it."""
        root_dir = get_root_dir(base_path, create=True)
        save_config(AppConfig(name=name), root_dir / "config.yaml")
        return await cls.load(base_path)

    async def _on_transaction(self, event: Event) -> None:
        wallet = event.data.get("wallet")
        record = event.data.get("record")
        if not wallet or not record:
            return
        await self.db.upsert_transaction(
            TransactionRow(
                signature=record["signature"],
                wallet=wallet,
                asset=record["asset"],
                amount=record["amount"],
                direction=record["direction"],
                state=record["state"],
                timestamp=datetime.fromisoformat(record["timestamp"]),
            )
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def connect(self) -> str:
        return await self.store.connect()

    async def disconnect(self) -> None:
        await self.store.disconnect()

    async def refresh(self) -> WalletSession:
        return await self.store.refresh()

    async def chat(self, text: str) -> list[ChatMessage]:
        return await self.orchestrator.handle_turn(text)

    async def transactions(self, limit: int = 50) -> list[dict]:
        """Persisted history of the connected wallet, newest first."""
        identity = self.store.identity
        if identity is None:
            return []
        rows = await self.db.get_transactions(identity, limit)
        return [row.model_dump(mode="json") for row in rows]

    def status(self) -> dict:
        snapshot = self.store.snapshot()
        return {
            "name": self.config.name,
            "rpc_url": self.config.chain.rpc_url,
            "cluster": self.config.chain.cluster,
            "assets": self.assets.symbols(),
            "signer": self.config.signer.kind if self.store.signer is not None else None,
            "wallet": snapshot.to_dict(),
            "pending_confirmations": self.engine.pending,
            "messages": len(self.transcript),
        }

    async def shutdown(self) -> None:
        """Clean shutdown."""
        self._tx_subscription.cancel()
        self.engine.close()
        await self.store.disconnect()
        signer = self.store.signer
        if signer is not None and hasattr(signer, "close"):
            await signer.close()
        await self.rpc.close()
        await self.db.close()
