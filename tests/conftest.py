"""Shared fixtures: an in-process Cashu mint served through httpx.MockTransport."""

import hashlib
import itertools
import json
from typing import Any

import httpx
import pytest
from coincurve import PrivateKey, PublicKey

from cashu_coco.crypto import hash_to_curve
from cashu_coco.manager import Manager
from cashu_coco.registry import ManagerRegistry
from cashu_coco.seed import SeedResolver
from cashu_coco.storage import MemoryRepositories

SEED_HEX = "00" * 64
OTHER_SEED_HEX = "11" * 64


class FakeMint:
    """Just enough of a NUT-00..09 mint to exercise the wallet for real.

    Signatures are produced with per-amount private keys, so proofs only
    verify when the wallet blinds and unblinds correctly.
    """

    def __init__(
        self,
        url: str = "https://fake.mint",
        *,
        keyset_id: str = "009a1f293253e41e",
        input_fee_ppk: int = 0,
        max_order: int = 12,
    ) -> None:
        self.url = url
        self.keyset_id = keyset_id
        self.input_fee_ppk = input_fee_ppk
        self.private_keys = {
            2**i: PrivateKey(hashlib.sha256(f"{url}:{keyset_id}:{2**i}".encode()).digest())
            for i in range(max_order + 1)
        }
        self.spent: set[str] = set()
        self.signed: dict[str, dict[str, Any]] = {}
        self.mint_quotes: dict[str, dict[str, Any]] = {}
        self.melt_quotes: dict[str, dict[str, Any]] = {}
        self.invoices: dict[str, int] = {}
        self.fee_reserve = 2
        self.melt_state = "PAID"
        self.offline = False
        self.requests: list[tuple[str, str]] = []
        self._ids = itertools.count(1)

    @property
    def host(self) -> str:
        return httpx.URL(self.url).host

    # ─────────────────────────────── Helpers ──────────────────────────────────

    def keys(self) -> dict[str, str]:
        return {
            str(amount): key.public_key.format(compressed=True).hex()
            for amount, key in self.private_keys.items()
        }

    def pay_mint_quote(self, quote_id: str) -> None:
        self.mint_quotes[quote_id]["state"] = "PAID"

    def _sign(self, output: dict[str, Any]) -> dict[str, Any]:
        key = self.private_keys[output["amount"]]
        C_ = PublicKey(bytes.fromhex(output["B_"])).multiply(key.secret)
        signature = {"id": self.keyset_id, "amount": output["amount"], "C_": C_.format().hex()}
        self.signed[output["B_"]] = {"output": output, "signature": signature}
        return signature

    def _verify_inputs(self, inputs: list[dict[str, Any]]) -> str | None:
        for proof in inputs:
            Y = hash_to_curve(proof["secret"].encode()).format().hex()
            if Y in self.spent:
                return "Token already spent."
            key = self.private_keys.get(proof["amount"])
            if key is None:
                return f"Unknown amount {proof['amount']}"
            expected = hash_to_curve(proof["secret"].encode()).multiply(key.secret)
            if expected.format().hex() != proof["C"]:
                return "Invalid proof signature"
        return None

    def _reused_outputs(self, outputs: list[dict[str, Any]]) -> str | None:
        if any(o["B_"] in self.signed for o in outputs):
            return "outputs have already been signed before."
        return None

    def _spend(self, inputs: list[dict[str, Any]]) -> None:
        for proof in inputs:
            self.spent.add(hash_to_curve(proof["secret"].encode()).format().hex())

    def _input_fees(self, inputs: list[dict[str, Any]]) -> int:
        return (len(inputs) * self.input_fee_ppk + 999) // 1000

    @staticmethod
    def _error(detail: str, status: int = 400) -> httpx.Response:
        return httpx.Response(status, json={"detail": detail, "code": 11000})

    # ─────────────────────────────── Routing ──────────────────────────────────

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("mint offline", request=request)

        path = request.url.path
        self.requests.append((request.method, path))
        body = json.loads(request.content) if request.content else {}

        if request.method == "GET":
            if path == "/v1/info":
                return httpx.Response(
                    200, json={"name": "Fake Mint", "version": "Nutshell/0.16.0", "nuts": {}}
                )
            if path == "/v1/keys" or path == f"/v1/keys/{self.keyset_id}":
                return httpx.Response(
                    200,
                    json={"keysets": [{"id": self.keyset_id, "unit": "sat", "keys": self.keys()}]},
                )
            if path == "/v1/keysets":
                return httpx.Response(
                    200,
                    json={
                        "keysets": [
                            {
                                "id": self.keyset_id,
                                "unit": "sat",
                                "active": True,
                                "input_fee_ppk": self.input_fee_ppk,
                            }
                        ]
                    },
                )
            if path.startswith("/v1/mint/quote/bolt11/"):
                quote = self.mint_quotes.get(path.rsplit("/", 1)[1])
                return httpx.Response(200, json=quote) if quote else self._error("Unknown quote", 404)
            if path.startswith("/v1/melt/quote/bolt11/"):
                quote = self.melt_quotes.get(path.rsplit("/", 1)[1])
                return httpx.Response(200, json=quote) if quote else self._error("Unknown quote", 404)

        if request.method == "POST":
            if path == "/v1/mint/quote/bolt11":
                return self._create_mint_quote(body)
            if path == "/v1/mint/bolt11":
                return self._mint(body)
            if path == "/v1/melt/quote/bolt11":
                return self._create_melt_quote(body)
            if path == "/v1/melt/bolt11":
                return self._melt(body)
            if path == "/v1/swap":
                return self._swap(body)
            if path == "/v1/checkstate":
                return self._check_state(body)
            if path == "/v1/restore":
                return self._restore(body)

        return self._error("Not found", 404)

    def _create_mint_quote(self, body: dict[str, Any]) -> httpx.Response:
        quote_id = f"mq{next(self._ids)}"
        self.mint_quotes[quote_id] = {
            "quote": quote_id,
            "request": f"lnbc{body['amount']}n1fake{quote_id}",
            "amount": body["amount"],
            "unit": body.get("unit", "sat"),
            "state": "UNPAID",
            "expiry": 1_900_000_000,
        }
        return httpx.Response(200, json=self.mint_quotes[quote_id])

    def _mint(self, body: dict[str, Any]) -> httpx.Response:
        quote = self.mint_quotes.get(body["quote"])
        if quote is None:
            return self._error("Unknown quote", 404)
        if quote["state"] != "PAID":
            return self._error(f"Quote not paid: {quote['state']}")
        if sum(o["amount"] for o in body["outputs"]) != quote["amount"]:
            return self._error("Outputs do not match quote amount")
        if error := self._reused_outputs(body["outputs"]):
            return self._error(error)
        quote["state"] = "ISSUED"
        return httpx.Response(200, json={"signatures": [self._sign(o) for o in body["outputs"]]})

    def _create_melt_quote(self, body: dict[str, Any]) -> httpx.Response:
        amount = self.invoices.get(body["request"])
        if amount is None:
            return self._error("Invalid invoice")
        quote_id = f"ml{next(self._ids)}"
        self.melt_quotes[quote_id] = {
            "quote": quote_id,
            "amount": amount,
            "fee_reserve": self.fee_reserve,
            "unit": body.get("unit", "sat"),
            "request": body["request"],
            "state": "UNPAID",
            "expiry": 1_900_000_000,
        }
        return httpx.Response(200, json=self.melt_quotes[quote_id])

    def _melt(self, body: dict[str, Any]) -> httpx.Response:
        quote = self.melt_quotes.get(body["quote"])
        if quote is None:
            return self._error("Unknown quote", 404)
        inputs = body["inputs"]
        if error := self._verify_inputs(inputs):
            return self._error(error)
        total = sum(p["amount"] for p in inputs) - self._input_fees(inputs)
        if total < quote["amount"] + quote["fee_reserve"]:
            return self._error("Inputs do not cover amount plus fee reserve")
        if error := self._reused_outputs(body.get("outputs") or []):
            return self._error(error)

        if self.melt_state != "PAID":
            quote["state"] = self.melt_state
            return httpx.Response(200, json={**quote, "change": []})

        self._spend(inputs)
        # Lightning fee is zero here, so the whole overpaid amount comes back
        overpaid = total - quote["amount"]
        change = []
        outputs = body.get("outputs") or []
        amounts = [2**i for i in range(overpaid.bit_length()) if overpaid >> i & 1]
        for output, amount in zip(outputs, amounts):
            change.append(self._sign({**output, "amount": amount}))
        quote.update(state="PAID", payment_preimage="00" * 32)
        return httpx.Response(200, json={**quote, "change": change})

    def _swap(self, body: dict[str, Any]) -> httpx.Response:
        inputs, outputs = body["inputs"], body["outputs"]
        if error := self._verify_inputs(inputs):
            return self._error(error)
        total_in = sum(p["amount"] for p in inputs) - self._input_fees(inputs)
        if total_in != sum(o["amount"] for o in outputs):
            return self._error("Inputs and outputs are not balanced")
        if error := self._reused_outputs(outputs):
            return self._error(error)
        self._spend(inputs)
        return httpx.Response(200, json={"signatures": [self._sign(o) for o in outputs]})

    def _check_state(self, body: dict[str, Any]) -> httpx.Response:
        states = [
            {"Y": Y, "state": "SPENT" if Y in self.spent else "UNSPENT", "witness": None}
            for Y in body["Ys"]
        ]
        return httpx.Response(200, json={"states": states})

    def _restore(self, body: dict[str, Any]) -> httpx.Response:
        outputs, signatures = [], []
        for output in body["outputs"]:
            known = self.signed.get(output["B_"])
            if known is not None:
                outputs.append(known["output"])
                signatures.append(known["signature"])
        return httpx.Response(200, json={"outputs": outputs, "signatures": signatures})


# ─────────────────────────────── Fixtures ─────────────────────────────────────


@pytest.fixture
def fake_mint() -> FakeMint:
    return FakeMint()


@pytest.fixture
def other_mint() -> FakeMint:
    return FakeMint("https://other.mint", keyset_id="00ad268c4d1f5826")


@pytest.fixture
async def client(fake_mint: FakeMint, other_mint: FakeMint):
    mints = {m.host: m for m in (fake_mint, other_mint)}

    def route(request: httpx.Request) -> httpx.Response:
        mint = mints.get(request.url.host)
        if mint is None:
            raise httpx.ConnectError(f"unknown host {request.url.host}", request=request)
        return mint.handler(request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(route)) as client:
        yield client


@pytest.fixture
async def manager(client: httpx.AsyncClient):
    manager = Manager(MemoryRepositories(), SeedResolver(SEED_HEX), client=client)
    yield manager
    await manager.aclose()


@pytest.fixture
async def other_manager(client: httpx.AsyncClient):
    manager = Manager(MemoryRepositories(), SeedResolver(OTHER_SEED_HEX), client=client)
    yield manager
    await manager.aclose()


@pytest.fixture
async def registry():
    registry = ManagerRegistry(restore_on_create=False)
    yield registry
    await registry.aclose()


async def fund(manager: Manager, mint: FakeMint, amount: int) -> int:
    """Mint ``amount`` into ``manager`` through a paid quote."""
    quote = await manager.quotes.create_mint_quote(mint.url, amount)
    mint.pay_mint_quote(quote["quote"])
    return await manager.quotes.redeem_mint_quote(mint.url, quote["quote"])


@pytest.fixture
def funder():
    return fund
