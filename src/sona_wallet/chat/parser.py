"""Command parser: recognises ``send <amount> <ASSET> to <address>``.

The trigger is deliberately narrow. Anything that is not exactly this shape
is ordinary conversation and goes to the assistant instead.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Iterable

from sona_wallet.wallet.models import Intent

_SEND_RE = re.compile(
    r"""
    \s*send\s+
    (?P<amount>\d+(?:\.\d+)?|\.\d+)\s+
    (?P<asset>[a-z][a-z0-9]*)\s+
    to\s+
    (?P<recipient>[a-z0-9]+)
    \s*[.!]?\s*
    """,
    re.IGNORECASE | re.VERBOSE,
)


def parse_command(text: str, symbols: Iterable[str]) -> Intent | None:
    """Extract a transfer :class:`Intent` from *text*.

    Returns ``None`` when the text is not a transfer command, including when
    the asset is not one of *symbols* or the amount is zero.
    """
    match = _SEND_RE.fullmatch(text)
    if match is None:
        return None

    asset = match.group("asset").upper()
    if asset not in {s.upper() for s in symbols}:
        return None

    try:
        amount = Decimal(match.group("amount"))
    except InvalidOperation:
        return None
    if amount <= 0:
        return None

    return Intent(asset=asset, amount=amount, recipient=match.group("recipient"))
