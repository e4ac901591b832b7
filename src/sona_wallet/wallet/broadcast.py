"""Broadcast & confirmation engine.

Submits signed transactions and watches them until they reach the requested
commitment level, fail, or the watch times out. A submission is never
retried here: a retry restarts the whole pipeline from the builder with a
fresh blockhash.
"""

from __future__ import annotations

import asyncio
import logging

from sona_wallet.core.events import SESSION_DISCONNECTED, TRANSFER_STAGE, Event, EventBus
from sona_wallet.errors import NetworkFailure, RpcError, SubmissionUncertain, TransactionFailed
from sona_wallet.wallet.models import (
    ConfirmationState,
    ConfirmationStatus,
    Direction,
    TransactionRecord,
    TransferRequest,
    TransferStage,
)
from sona_wallet.wallet.rpc import SolanaRpcClient
from sona_wallet.wallet.store import WalletStateStore

logger = logging.getLogger("sona_wallet.wallet.broadcast")

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


def reached(status: str | None, level: str) -> bool:
    """True if a reported confirmation *status* satisfies *level*."""
    if status is None:
        return False
    return _COMMITMENT_RANK.get(status, -1) >= _COMMITMENT_RANK[level]


class BroadcastEngine:
    """Submits transactions and tracks them to a terminal outcome.

    Parameters
    ----------
    rpc:
        Chain RPC boundary.
    store:
        Wallet state store; receives the history record and the
        post-confirmation refresh.
    bus:
        Event bus; the engine listens for ``session.disconnected`` to stop
        its watchers and publishes transfer stage changes.
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        store: WalletStateStore,
        bus: EventBus,
        *,
        commitment: str = "confirmed",
        poll_interval: float = 2.0,
        timeout: float = 60.0,
    ) -> None:
        self.rpc = rpc
        self.store = store
        self.bus = bus
        self.commitment = commitment
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._watchers: set[asyncio.Task] = set()
        self._detached: set[asyncio.Task] = set()
        self._subscription = bus.subscribe(SESSION_DISCONNECTED, self._on_disconnect)

    async def _on_disconnect(self, event: Event) -> None:
        self.cancel_all()

    def close(self) -> None:
        """Stop watching and drop the bus subscription."""
        self.cancel_all()
        self._subscription.cancel()

    @property
    def pending(self) -> int:
        return len(self._watchers)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def submit(self, request: TransferRequest) -> str:
        """Send the signed transaction. Raises :class:`TransactionFailed`."""
        if request.signed is None:
            raise RuntimeError("Transfer has not been signed")
        try:
            signature = await self.rpc.send_transaction(bytes(request.signed))
        except RpcError as exc:
            raise TransactionFailed(f"Submission rejected: {exc}") from exc
        except NetworkFailure as exc:
            # The request may have reached the node before the connection dropped
            raise SubmissionUncertain(
                f"Submission interrupted: {exc}", signature=str(request.signed.signatures[0])
            ) from exc

        request.signature = signature
        request.advance(TransferStage.SUBMITTED)
        logger.info(f"Submitted {request.intent.describe()}: {signature}")
        self.store.record_transaction(
            TransactionRecord(
                signature=signature,
                asset=request.intent.asset,
                amount=request.intent.amount,
                direction=Direction.OUT,
                state=ConfirmationState.SUBMITTED,
            )
        )
        await self.bus.publish(TRANSFER_STAGE, signature=signature, stage=request.stage.value)
        return signature

    async def await_confirmation(self, signature: str, level: str | None = None) -> ConfirmationStatus:
        """Poll until *signature* reaches *level*, fails, or the timeout passes."""
        watcher = asyncio.ensure_future(self._poll_status(signature, level or self.commitment))
        self._watchers.add(watcher)
        try:
            return await watcher
        except asyncio.CancelledError:
            if watcher in self._detached:
                logger.info(f"Stopped watching {signature}")
                return ConfirmationStatus.CANCELLED
            raise
        finally:
            self._watchers.discard(watcher)
            self._detached.discard(watcher)

    async def _poll_status(self, signature: str, level: str) -> ConfirmationStatus:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while True:
            try:
                statuses = await self.rpc.get_signature_statuses([signature])
                status = statuses[0] if statuses else None
            except (NetworkFailure, RpcError) as e:
                logger.warning(f"Status poll for {signature} failed: {e}")
                status = None

            if status is not None:
                if status.get("err"):
                    logger.warning(f"Transaction {signature} failed on chain: {status['err']}")
                    return ConfirmationStatus.FAILED
                if reached(status.get("confirmationStatus"), level):
                    return ConfirmationStatus.CONFIRMED

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(f"Transaction {signature} not {level} after {self.timeout}s")
                return ConfirmationStatus.EXPIRED
            await asyncio.sleep(min(self.poll_interval, remaining))

    def cancel_all(self) -> None:
        """Stop every pending confirmation watcher."""
        for watcher in list(self._watchers):
            if not watcher.done():
                self._detached.add(watcher)
                watcher.cancel()

    # ------------------------------------------------------------------
    # Full broadcast stage
    # ------------------------------------------------------------------

    async def execute(self, request: TransferRequest) -> ConfirmationStatus:
        """Submit, wait, and reconcile the store. Raises :class:`TransactionFailed`."""
        signature = await self.submit(request)
        outcome = await self.await_confirmation(signature)

        if outcome is ConfirmationStatus.CONFIRMED:
            request.advance(TransferStage.CONFIRMED)
            self.store.resolve_transaction(signature, ConfirmationState.CONFIRMED)
            await self.store.refresh(fresh=True)
        elif outcome is ConfirmationStatus.FAILED:
            self.store.resolve_transaction(signature, ConfirmationState.FAILED)
            error = TransactionFailed("Transaction failed on chain", signature=signature)
            request.fail(error)
            await self.bus.publish(TRANSFER_STAGE, signature=signature, stage=request.stage.value)
            raise error
        else:
            # Expired or no longer watched: the transaction may still land
            request.advance(TransferStage.EXPIRED)

        await self.bus.publish(TRANSFER_STAGE, signature=signature, stage=request.stage.value)
        return outcome
