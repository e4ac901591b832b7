"""Intent classification service.

A message the command parser does not recognise is sent here together with
the chat history. The reply is either plain assistant text or text plus a
``send_token`` action, which the orchestrator treats exactly like a parsed
command.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Literal, Optional, Sequence

from pydantic import BaseModel, ValidationError

from sona_wallet.errors import WalletError, format_amount
from sona_wallet.llm.base import LLMMessage, ToolDefinition
from sona_wallet.llm.router import LLMRouter
from sona_wallet.storage.models import ChatMessage
from sona_wallet.wallet.assets import AssetRegistry
from sona_wallet.wallet.models import WalletSession

logger = logging.getLogger("sona_wallet.chat.classifier")


class SendTokenAction(BaseModel):
    type: Literal["send_token"] = "send_token"
    token: str
    amount: Decimal
    recipient: str


class AssistantReply(BaseModel):
    """Response contract of the classification service."""

    content: str
    role: Literal["assistant"] = "assistant"
    action: Optional[SendTokenAction] = None


class ClassifierError(WalletError):
    """The classification service could not produce a reply."""

    def user_message(self) -> str:
        return "I apologize, but I encountered an error. Please try again."


class IntentClassifier(ABC):
    @abstractmethod
    async def classify(
        self,
        history: Sequence[ChatMessage],
        wallet_context: WalletSession | None = None,
    ) -> AssistantReply:
        """Reply to the last message of *history*.

        Raises :class:`ClassifierError` when no reply can be produced.
        """


# ---------------------------------------------------------------------------
# LLM-backed implementation
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = """\
You are {name}, an educational AI assistant for DeFi enthusiasts using a crypto wallet application.

{wallet_status}

You are an expert in DeFi, staking, Solana, {symbols} and related topics. Provide educational, accurate, and helpful information about:

1. Solana blockchain and its ecosystem
2. DeFi concepts and protocols on Solana
3. Staking mechanisms and rewards on Solana
4. {symbols} token information
5. Best practices for crypto security and management

Only provide wallet balance information when specifically requested by the user.

For sending tokens:
1. Users can send tokens by typing a message in this format:
{formats}
2. When the user clearly asks to send tokens in other words, call the send_token tool with the token symbol, the amount and the recipient address. Never invent an address or an amount.

Be concise, educational, and accurate. If you don't know something, admit it rather than providing incorrect information."""


def describe_wallet(snapshot: WalletSession | None, assets: AssetRegistry) -> str:
    """Wallet status paragraph for the system prompt."""
    if snapshot is None or not snapshot.connected:
        return "The user has not connected their wallet yet."
    lines = [f"The user has connected the wallet {snapshot.identity} with the following balances:"]
    for symbol in assets.symbols():
        balance = snapshot.balance_of(symbol)
        shown = f"{format_amount(balance)} {symbol}" if balance is not None else "Not available"
        lines.append(f"- {symbol} Balance: {shown}")
    return "\n".join(lines)


def send_token_tool(assets: AssetRegistry) -> ToolDefinition:
    return ToolDefinition(
        name="send_token",
        description="Send a whitelisted token from the user's connected wallet to a Solana address.",
        parameters={
            "type": "object",
            "properties": {
                "token": {"type": "string", "enum": assets.symbols()},
                "amount": {"type": "string", "description": "Decimal amount, e.g. \"2.5\""},
                "recipient": {"type": "string", "description": "Base58 Solana address"},
            },
            "required": ["token", "amount", "recipient"],
        },
    )


class LLMIntentClassifier(IntentClassifier):
    """Classifies and replies through the configured LLM provider."""

    def __init__(self, router: LLMRouter, assets: AssetRegistry, name: str = "Sona"):
        self.router = router
        self.assets = assets
        self.name = name

    def system_prompt(self, wallet_context: WalletSession | None) -> str:
        formats = "\n".join(
            f'   - "send [amount] {symbol} to [address]"' for symbol in self.assets.symbols()
        )
        return SYSTEM_PROMPT.format(
            name=self.name,
            wallet_status=describe_wallet(wallet_context, self.assets),
            symbols=", ".join(self.assets.symbols()),
            formats=formats,
        )

    async def classify(
        self,
        history: Sequence[ChatMessage],
        wallet_context: WalletSession | None = None,
    ) -> AssistantReply:
        messages = [LLMMessage(role="system", content=self.system_prompt(wallet_context))]
        messages.extend(LLMMessage(role=m.role.value, content=m.content) for m in history)

        try:
            provider = self.router.get_provider()
            response = await provider.complete(messages, tools=[send_token_tool(self.assets)])
        except Exception as exc:
            raise ClassifierError(f"LLM request failed: {exc}") from exc

        action = None
        for call in response.tool_calls or []:
            if call.name != "send_token":
                continue
            try:
                action = SendTokenAction.model_validate(call.arguments)
            except ValidationError as exc:
                logger.warning(f"Ignoring malformed send_token call: {exc}")
                continue
            break

        content = response.content
        if not content and action is not None:
            content = (
                f"I'll help you send {format_amount(action.amount)} {action.token.upper()} "
                f"to {action.recipient}. Please confirm the transaction in your wallet."
            )
        if not content:
            raise ClassifierError("LLM returned an empty reply")
        return AssistantReply(content=content, action=action)
