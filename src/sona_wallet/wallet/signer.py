"""External signer gateway: the only channel to the user's private key.

The core never holds keys. It asks a :class:`SignerGateway` for the wallet's
public key and for signatures; the user approves or rejects every request in
their wallet. A rejection is terminal for that transfer and is never retried.
"""

from __future__ import annotations

import base64
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Awaitable, Callable

import httpx
from solders.keypair import Keypair
from solders.transaction import Transaction

from sona_wallet.config import SignerConfig
from sona_wallet.errors import SignerError, SignerUnavailable, UserRejected
from sona_wallet.wallet.models import UnsignedTransaction

logger = logging.getLogger("sona_wallet.wallet.signer")


class SignerGateway(ABC):
    """Capability interface implemented by wallet integrations."""

    name: str = "signer"

    @abstractmethod
    async def connect(self) -> str:
        """Handshake with the wallet and return its base58 public key.

        Raises :class:`SignerUnavailable` if the wallet cannot be reached and
        :class:`UserRejected` if the user declines the connection.
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the wallet connection."""

    @abstractmethod
    async def sign_transaction(self, unsigned: UnsignedTransaction) -> Transaction:
        """Return the transaction signed by the wallet's key.

        Raises :class:`UserRejected` or :class:`SignerError`.
        """


# ---------------------------------------------------------------------------
# Local keypair (devnet / tests)
# ---------------------------------------------------------------------------

Approver = Callable[[UnsignedTransaction], Awaitable[bool]]


async def _approve_all(unsigned: UnsignedTransaction) -> bool:
    return True


class KeypairSigner(SignerGateway):
    """Signs with an in-process keypair after asking ``approve``.

    Intended for devnet and tests; production deployments use a wallet
    reached through :class:`HttpSignerGateway`.
    """

    name = "keypair"

    def __init__(self, keypair: Keypair, approve: Approver | None = None):
        self._keypair = keypair
        self._approve = approve or _approve_all
        self._connected = False

    @classmethod
    def from_file(cls, path: Path, approve: Approver | None = None) -> KeypairSigner:
        """Load a Solana CLI keypair file (JSON array of 64 bytes)."""
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
            keypair = Keypair.from_bytes(bytes(raw))
        except FileNotFoundError as exc:
            raise SignerUnavailable(f"No keypair file at {path}") from exc
        except (ValueError, TypeError) as exc:
            raise SignerUnavailable(f"Unreadable keypair file {path}: {exc}") from exc
        return cls(keypair, approve)

    @property
    def pubkey(self) -> str:
        return str(self._keypair.pubkey())

    async def connect(self) -> str:
        self._connected = True
        return self.pubkey

    async def disconnect(self) -> None:
        self._connected = False

    async def sign_transaction(self, unsigned: UnsignedTransaction) -> Transaction:
        if not self._connected:
            raise SignerUnavailable("Keypair signer is not connected")
        if not await self._approve(unsigned):
            raise UserRejected("Signature request declined")
        message = unsigned.transaction.message
        try:
            return Transaction([self._keypair], message, message.recent_blockhash)
        except Exception as exc:
            raise SignerError(f"Signing failed: {exc}") from exc


# ---------------------------------------------------------------------------
# HTTP wallet bridge
# ---------------------------------------------------------------------------


class HttpSignerGateway(SignerGateway):
    """Talks to a wallet bridge over HTTP.

    Protocol::

        POST {url}/connect     -> {"publicKey": "<base58>"}
        POST {url}/disconnect  -> {}
        POST {url}/sign  {"transaction": "<base64 unsigned>"}
                               -> {"signedTransaction": "<base64 signed>"}

    A ``403`` or a ``{"error": "rejected"}`` body means the user declined.
    """

    name = "http"

    def __init__(self, url: str, timeout: float = 120.0, client: httpx.AsyncClient | None = None):
        self.url = url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _post(self, path: str, body: dict) -> dict:
        try:
            resp = await self._client.post(f"{self.url}{path}", json=body)
        except httpx.HTTPError as exc:
            raise SignerUnavailable(f"Wallet bridge unreachable: {exc}") from exc

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {}

        if resp.status_code == 403 or data.get("error") == "rejected":
            raise UserRejected(data.get("message", "Request rejected in wallet"))
        if resp.status_code == 404 or resp.status_code == 503:
            raise SignerUnavailable(f"Wallet bridge not available (HTTP {resp.status_code})")
        if resp.status_code >= 400 or data.get("error"):
            raise SignerError(data.get("message") or data.get("error") or f"HTTP {resp.status_code}")
        return data

    async def connect(self) -> str:
        data = await self._post("/connect", {})
        pubkey = data.get("publicKey")
        if not pubkey:
            raise SignerError("Wallet bridge returned no public key")
        return pubkey

    async def disconnect(self) -> None:
        await self._post("/disconnect", {})

    async def sign_transaction(self, unsigned: UnsignedTransaction) -> Transaction:
        encoded = base64.b64encode(bytes(unsigned.transaction)).decode("ascii")
        data = await self._post("/sign", {"transaction": encoded})
        try:
            raw = base64.b64decode(data["signedTransaction"])
            return Transaction.from_bytes(raw)
        except (KeyError, ValueError) as exc:
            raise SignerError(f"Wallet bridge returned an invalid transaction: {exc}") from exc

    async def close(self) -> None:
        await self._client.aclose()


def load_signer(config: SignerConfig) -> SignerGateway | None:
    """Build the configured signer. ``None`` means no signer is present."""
    if config.kind == "keypair":
        if not config.keypair_path:
            logger.warning("signer.kind is 'keypair' but no keypair_path is set")
            return None
        return KeypairSigner.from_file(Path(config.keypair_path).expanduser())
    if config.kind == "http":
        if not config.url:
            logger.warning("signer.kind is 'http' but no url is set")
            return None
        return HttpSignerGateway(config.url, timeout=config.timeout)
    return None
