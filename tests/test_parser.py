import unittest
from decimal import Decimal

from sona_wallet.chat.parser import parse_command

SYMBOLS = ["SOL", "SONIC"]
ADDRESS = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"


class ParseCommandTests(unittest.TestCase):
    def test_native_transfer(self) -> None:
        intent = parse_command(f"send 2.5 SOL to {ADDRESS}", SYMBOLS)
        self.assertIsNotNone(intent)
        self.assertEqual(intent.asset, "SOL")
        self.assertEqual(intent.amount, Decimal("2.5"))
        self.assertEqual(intent.recipient, ADDRESS)

    def test_case_insensitive_and_asset_is_normalised(self) -> None:
        intent = parse_command(f"SEND 10 sonic TO {ADDRESS}", SYMBOLS)
        self.assertEqual(intent.asset, "SONIC")
        self.assertEqual(intent.amount, Decimal(10))

    def test_tolerates_whitespace_and_trailing_punctuation(self) -> None:
        intent = parse_command(f"  send   .5  SOL  to  {ADDRESS}!  ", SYMBOLS)
        self.assertEqual(intent.amount, Decimal("0.5"))

    def test_address_is_not_validated_here(self) -> None:
        intent = parse_command("send 1 SOL to notanaddress", SYMBOLS)
        self.assertEqual(intent.recipient, "notanaddress")

    def test_misses(self) -> None:
        misses = [
            "what is staking?",
            f"send 1 BTC to {ADDRESS}",
            f"send 0 SOL to {ADDRESS}",
            f"send -1 SOL to {ADDRESS}",
            f"send SOL to {ADDRESS}",
            f"please send 1 SOL to {ADDRESS}",
            f"send 1 SOL to {ADDRESS} now",
            "send 1 SOL to",
            "",
        ]
        for text in misses:
            with self.subTest(text=text):
                self.assertIsNone(parse_command(text, SYMBOLS))

    def test_whitelist_comes_from_caller(self) -> None:
        self.assertIsNotNone(parse_command(f"send 3 USDC to {ADDRESS}", ["SOL", "usdc"]))


if __name__ == "__main__":
    unittest.main()
