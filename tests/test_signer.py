import base64
import json
import tempfile
import unittest
from decimal import Decimal
from pathlib import Path

import httpx
from solders.keypair import Keypair
from solders.transaction import Transaction

from sona_wallet.config import SignerConfig
from sona_wallet.errors import SignerError, SignerUnavailable, UserRejected
from sona_wallet.wallet.builder import TransactionBuilder
from sona_wallet.wallet.models import Intent
from sona_wallet.wallet.signer import HttpSignerGateway, KeypairSigner, load_signer

from tests.fakes import FakeRpc, default_assets, new_address


async def _unsigned(sender: str):
    builder = TransactionBuilder(FakeRpc(), default_assets())
    return await builder.build(Intent("SOL", Decimal(1), new_address()), sender)


class KeypairSignerTests(unittest.IsolatedAsyncioTestCase):
    async def test_signs_after_approval(self) -> None:
        signer = KeypairSigner(Keypair())
        await signer.connect()

        signed = await signer.sign_transaction(await _unsigned(signer.pubkey))

        self.assertTrue(signed.is_signed())
        signed.verify()

    async def test_rejection(self) -> None:
        async def decline(unsigned):
            return False

        signer = KeypairSigner(Keypair(), approve=decline)
        await signer.connect()
        with self.assertRaises(UserRejected):
            await signer.sign_transaction(await _unsigned(signer.pubkey))

    async def test_must_be_connected(self) -> None:
        signer = KeypairSigner(Keypair())
        with self.assertRaises(SignerUnavailable):
            await signer.sign_transaction(await _unsigned(signer.pubkey))

    def test_from_file(self) -> None:
        keypair = Keypair()
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "id.json"
            path.write_text(json.dumps(list(bytes(keypair))))
            signer = KeypairSigner.from_file(path)
            self.assertEqual(signer.pubkey, str(keypair.pubkey()))

            with self.assertRaises(SignerUnavailable):
                KeypairSigner.from_file(Path(tmp) / "missing.json")

            bad = Path(tmp) / "bad.json"
            bad.write_text("[1, 2, 3]")
            with self.assertRaises(SignerUnavailable):
                KeypairSigner.from_file(bad)


class HttpSignerGatewayTests(unittest.IsolatedAsyncioTestCase):
    def _gateway(self, handler) -> HttpSignerGateway:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpSignerGateway("http://bridge.test/", client=client)

    async def test_connect_and_sign(self) -> None:
        keypair = Keypair()

        def handler(request):
            if request.url.path == "/connect":
                return httpx.Response(200, json={"publicKey": str(keypair.pubkey())})
            body = json.loads(request.content)
            unsigned = Transaction.from_bytes(base64.b64decode(body["transaction"]))
            message = unsigned.message
            signed = Transaction([keypair], message, message.recent_blockhash)
            return httpx.Response(
                200, json={"signedTransaction": base64.b64encode(bytes(signed)).decode()}
            )

        gateway = self._gateway(handler)
        identity = await gateway.connect()
        signed = await gateway.sign_transaction(await _unsigned(identity))

        self.assertEqual(identity, str(keypair.pubkey()))
        self.assertEqual(signed.message.account_keys[0], keypair.pubkey())

    async def test_error_mapping(self) -> None:
        cases = [
            (lambda r: httpx.Response(403), UserRejected),
            (lambda r: httpx.Response(200, json={"error": "rejected"}), UserRejected),
            (lambda r: httpx.Response(503), SignerUnavailable),
            (lambda r: httpx.Response(500, json={"error": "boom"}), SignerError),
            (lambda r: httpx.Response(200, json={}), SignerError),
        ]
        for handler, expected in cases:
            with self.subTest(expected=expected.__name__):
                with self.assertRaises(expected):
                    await self._gateway(handler).connect()

    async def test_unreachable_bridge(self) -> None:
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with self.assertRaises(SignerUnavailable):
            await self._gateway(handler).connect()


class LoadSignerTests(unittest.TestCase):
    def test_none_configured(self) -> None:
        self.assertIsNone(load_signer(SignerConfig()))
        self.assertIsNone(load_signer(SignerConfig(kind="http")))

    def test_http(self) -> None:
        signer = load_signer(SignerConfig(kind="http", url="http://bridge.test"))
        self.assertIsInstance(signer, HttpSignerGateway)


if __name__ == "__main__":
    unittest.main()
