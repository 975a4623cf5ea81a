"""Workflow node: dispatch (resource, operation) pairs to a cached manager."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

import httpx

from .config import Settings
from .description import CREDENTIAL_NAME, OPERATION_ALIASES
from .host import ExecuteContext
from .manager import Manager
from .mint import Mint, normalize_mint_url
from .registry import ManagerConfig, ManagerKey, ManagerRegistry
from .storage import SqliteOptions
from .token import get_decoded_token, get_encoded_token
from .types import CashuCocoError, NodeOperationError

logger = logging.getLogger(__name__)

Handler = Callable[["_Call"], Awaitable[dict[str, Any]]]


class _Call:
    """Everything one item's operation needs."""

    def __init__(
        self,
        ctx: ExecuteContext,
        index: int,
        credentials: dict[str, Any],
        manager: Manager,
        mint_url: str,
    ) -> None:
        self.ctx = ctx
        self.index = index
        self.credentials = credentials
        self.manager = manager
        self.mint_url = mint_url

    def param(self, name: str) -> Any:
        return self.ctx.get_node_parameter(name, self.index)


class CashuCocoNode:
    """Executes Cashu wallet operations for a batch of input items.

    Managers are shared across executions through ``registry``; persistent
    state lives in the sqlite file named by ``settings.db_path``.
    """

    def __init__(
        self,
        registry: ManagerRegistry,
        settings: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.registry = registry
        self.settings = settings or Settings()
        self.client = client
        self._handlers: dict[tuple[str, str], Handler] = {
            ("mint", "addMint"): self._add_mint,
            ("mint", "getInfo"): self._get_info,
            ("wallet", "getBalances"): self._get_balances,
            ("wallet", "send"): self._send,
            ("wallet", "receive"): self._receive,
            ("wallet", "receiveFromUntrustedMint"): self._receive_untrusted,
            ("quote", "createMintQuote"): self._create_mint_quote,
            ("quote", "redeemMintQuote"): self._redeem_mint_quote,
            ("quote", "createMeltQuote"): self._create_melt_quote,
            ("quote", "payMeltQuote"): self._pay_melt_quote,
        }

    async def execute(self, ctx: ExecuteContext) -> list[dict[str, Any]]:
        """Run the configured operation once per input item.

        Returns:
            One output item per input, ``{"json": ..., "pairedItem": index}``

        Raises:
            NodeOperationError: On the first failing item, unless the context
                asks to continue on failure
        """
        out: list[dict[str, Any]] = []
        for index, _item in enumerate(ctx.get_input_data()):
            try:
                result = await self._run_item(ctx, index)
            except Exception as e:
                if ctx.continue_on_fail():
                    out.append({"json": {"error": str(e)}, "pairedItem": index})
                    continue
                logger.error("Item %d failed: %s", index, e)
                raise NodeOperationError(str(e), item_index=index) from e
            out.append({"json": result, "pairedItem": index})
        return out

    async def _run_item(self, ctx: ExecuteContext, index: int) -> dict[str, Any]:
        resource = ctx.get_node_parameter("resource", index)
        operation = ctx.get_node_parameter("operation", index)
        operation = OPERATION_ALIASES.get(operation, operation)
        handler = self._handlers.get((resource, operation))
        if handler is None:
            raise NodeOperationError(
                f"Unsupported operation '{operation}' for resource '{resource}'",
                item_index=index,
            )

        credentials = await ctx.get_credentials(CREDENTIAL_NAME)
        seed = str(credentials.get("seed") or "")
        if not seed:
            raise NodeOperationError("Credential 'seed' is required", item_index=index)
        credential_mint = str(credentials.get("mintUrl") or self.settings.mint_url)
        mint_url = ctx.get_node_parameter("mintUrl", index) or credential_mint

        manager = await self.registry.get_or_create(
            ManagerKey.for_seed(credential_mint, seed),
            ManagerConfig(
                seed_secret=seed,
                storage=SqliteOptions(path=self.settings.db_path),
                client=self.client,
            ),
        )
        logger.debug("Running %s:%s for item %d", resource, operation, index)
        return await handler(_Call(ctx, index, credentials, manager, mint_url))

    # ─────────────────────────────── Mint ─────────────────────────────────────

    async def _add_mint(self, call: _Call) -> dict[str, Any]:
        return await call.manager.mint.add_mint(call.mint_url)

    async def _get_info(self, call: _Call) -> dict[str, Any]:
        return await call.manager.mint.get_mint_info(call.mint_url)

    # ─────────────────────────────── Wallet ───────────────────────────────────

    async def _get_balances(self, call: _Call) -> dict[str, Any]:
        return dict(await call.manager.wallet.get_balances())

    async def _send(self, call: _Call) -> dict[str, Any]:
        amount = int(call.param("amount"))
        token = await call.manager.wallet.send(call.mint_url, amount)
        if call.param("asToken"):
            return {"token": get_encoded_token(token)}
        return {"token": token.to_dict()}

    async def _receive(self, call: _Call) -> dict[str, Any]:
        amount = await call.manager.wallet.receive(str(call.param("token")))
        return {"received": True, "amount": amount}

    async def _receive_untrusted(self, call: _Call) -> dict[str, Any]:
        token = get_decoded_token(str(call.param("token")))
        seed = str(call.credentials["seed"])
        # Separate entry keyed by the token's mint with ephemeral wallet storage;
        # its keyset counters stay in the database with the seed's other entries
        manager = await self.registry.get_or_create(
            ManagerKey.for_seed(token.mint, seed),
            ManagerConfig(
                seed_secret=seed,
                counter_storage=SqliteOptions(path=self.settings.db_path),
                client=self.client,
            ),
        )
        await manager.mint.add_mint(token.mint)
        amount = await manager.wallet.receive(token)
        return {"received": True, "amount": amount, "mint": normalize_mint_url(token.mint)}

    # ─────────────────────────────── Quotes ───────────────────────────────────

    async def _create_mint_quote(self, call: _Call) -> dict[str, Any]:
        amount = int(call.param("quoteAmount"))
        return await call.manager.quotes.create_mint_quote(call.mint_url, amount)

    async def _redeem_mint_quote(self, call: _Call) -> dict[str, Any]:
        quote_id = str(call.param("quoteId"))
        amount = await call.manager.quotes.redeem_mint_quote(call.mint_url, quote_id)
        return {"redeemed": True, "quoteId": quote_id, "amount": amount}

    async def _create_melt_quote(self, call: _Call) -> dict[str, Any]:
        invoice = str(call.param("invoice"))
        return await call.manager.quotes.create_melt_quote(call.mint_url, invoice)

    async def _pay_melt_quote(self, call: _Call) -> dict[str, Any]:
        quote_id = str(call.param("quoteId"))
        result = await call.manager.quotes.pay_melt_quote(call.mint_url, quote_id)
        return {**result, "quoteId": quote_id}


async def test_credentials(
    credentials: dict[str, Any], *, client: httpx.AsyncClient | None = None
) -> dict[str, str]:
    """Check that the credential's mint answers ``GET /v1/info``."""
    mint_url = str(credentials.get("mintUrl") or "")
    if not mint_url:
        return {"status": "Error", "message": "Mint URL is required"}

    mint = Mint(mint_url, client=client)
    try:
        info = await mint.get_info()
    except CashuCocoError as e:
        return {"status": "Error", "message": str(e)}
    finally:
        await mint.aclose()

    name = info.get("name") or normalize_mint_url(mint_url)
    return {"status": "OK", "message": f"Connected to {name}"}


# pytest must not collect the credential check as a test
test_credentials.__test__ = False  # type: ignore[attr-defined]
