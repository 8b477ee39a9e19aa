"""
On-chain order actions for the Proton ``dex`` contract.

Orders are shaped here as EOSIO-style actions (token ``transfer`` deposit,
``placeorder``, ``process``, ``cancelorder``) and handed to a submitter. Signing
and broadcasting are done by an external signer service that accepts the
action list over HTTP; ``DryRunSubmitter`` only logs what would be sent.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from decimal import ROUND_UP
from typing import Any, Optional, Protocol, Sequence

import aiohttp

from dex_errors import SubmissionFailure
from dex_models import DesiredOrder, FillType, Market, OpenOrder, OrderSide, OrderType
from precision import asset_text, normalize

LOGGER = logging.getLogger("proton-grid.dexrpc")

DEX_CONTRACT = "dex"
PROCESS_QUEUE_SIZE = 50

Action = dict[str, Any]


class TransactionSubmitter(Protocol):
    async def submit_actions(self, actions: list[Action]) -> dict[str, Any]:
        ...


class ActionBuilder:
    def __init__(self, account: str, permission: str = "active"):
        self.account = account
        self.permission = permission

    def _action(self, contract: str, name: str, data: dict[str, Any]) -> Action:
        return {
            "account": contract,
            "name": name,
            "authorization": [{"actor": self.account, "permission": self.permission}],
            "data": data,
        }

    def deposit(self, market: Market, order: DesiredOrder) -> Action:
        if order.side is OrderSide.SELL:
            token = market.bid_token
            quantity = asset_text(order.quantity, token, ROUND_UP)
        else:
            token = market.ask_token
            quantity = asset_text(order.total, token, ROUND_UP)
        return self._action(
            token.contract,
            "transfer",
            {"from": self.account, "to": DEX_CONTRACT, "quantity": quantity, "memo": ""},
        )

    def place_order(self, market: Market, order: DesiredOrder) -> Action:
        bid_token = market.bid_token
        ask_token = market.ask_token
        # Sells are sized in base units, buys in the quote amount they spend.
        if order.side is OrderSide.SELL:
            quantity = normalize(order.quantity, bid_token.multiplier)
        else:
            quantity = normalize(order.total, ask_token.multiplier)
        return self._action(
            DEX_CONTRACT,
            "placeorder",
            {
                "market_id": market.market_id,
                "account": self.account,
                "order_type": int(OrderType.LIMIT),
                "order_side": int(order.side),
                "quantity": quantity,
                "price": normalize(order.price, ask_token.multiplier),
                "bid_symbol": {"sym": bid_token.symbol_code, "contract": bid_token.contract},
                "ask_symbol": {"sym": ask_token.symbol_code, "contract": ask_token.contract},
                "trigger_price": 0,
                "fill_type": int(FillType.POST_ONLY),
                "referrer": "",
            },
        )

    def limit_order(self, market: Market, order: DesiredOrder) -> list[Action]:
        return [self.deposit(market, order), self.place_order(market, order)]

    def process(self, queue_size: int = PROCESS_QUEUE_SIZE) -> Action:
        return self._action(DEX_CONTRACT, "process", {"q_size": queue_size, "show_error_msg": 0})

    def cancel_order(self, order_id: str) -> Action:
        return self._action(DEX_CONTRACT, "cancelorder", {"account": self.account, "order_id": order_id})


class SignerServiceSubmitter:
    """POSTs action lists to a signing service that signs and broadcasts them."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str,
        token: Optional[str] = None,
        blocks_behind: int = 300,
        expire_seconds: int = 3000,
    ):
        self.session = session
        self.url = url
        self.token = token
        self.blocks_behind = blocks_behind
        self.expire_seconds = expire_seconds

    async def submit_actions(self, actions: list[Action]) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        payload = {
            "actions": actions,
            "blocksBehind": self.blocks_behind,
            "expireSeconds": self.expire_seconds,
        }
        try:
            async with self.session.post(self.url, json=payload, headers=headers) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    raise SubmissionFailure(f"Signer returned HTTP {resp.status}: {text}")
                receipt = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise SubmissionFailure(f"Signer request failed: {exc}") from exc
        if not isinstance(receipt, dict):
            raise SubmissionFailure(f"Unexpected signer response: {receipt!r}")
        if receipt.get("error"):
            raise SubmissionFailure(f"Transaction rejected: {receipt['error']}")
        return receipt


class DryRunSubmitter:
    def __init__(self) -> None:
        self.submitted: list[list[Action]] = []

    async def submit_actions(self, actions: list[Action]) -> dict[str, Any]:
        self.submitted.append(actions)
        for action in actions:
            LOGGER.info("[dry-run] %s.%s %s", action["account"], action["name"], action["data"])
        return {"transaction_id": f"dry-run-{secrets.token_hex(6)}", "dry_run": True}


class OrderBatcher:
    def __init__(
        self,
        submitter: TransactionSubmitter,
        builder: ActionBuilder,
        batch_size: int = 30,
        batch_delay: float = 2.0,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.submitter = submitter
        self.builder = builder
        self.batch_size = batch_size
        self.batch_delay = batch_delay

    def _chunks(self, items: Sequence[Any]) -> list[Sequence[Any]]:
        return [items[start : start + self.batch_size] for start in range(0, len(items), self.batch_size)]

    async def _submit_paced(
        self, batches: list[list[Action]], items: list[Sequence[Any]]
    ) -> list[dict[str, Any]]:
        receipts = []
        completed: list[Any] = []
        for number, actions in enumerate(batches):
            if number and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)
            try:
                receipts.append(await self.submitter.submit_actions(actions))
            except SubmissionFailure as exc:
                raise SubmissionFailure(str(exc), completed) from exc
            completed.extend(items[number])
        return receipts

    async def place_orders(self, market: Market, orders: Sequence[DesiredOrder]) -> list[dict[str, Any]]:
        batches: list[list[Action]] = []
        chunks = self._chunks(orders)
        for chunk in chunks:
            actions: list[Action] = []
            for order in chunk:
                LOGGER.info(
                    "Placing %s order on %s for %s at %s (total %s %s)",
                    order.side.name.lower(),
                    market.symbol,
                    asset_text(order.quantity, market.bid_token),
                    order.price,
                    order.total,
                    market.ask_token.code,
                )
                actions.extend(self.builder.limit_order(market, order))
            actions.append(self.builder.process())
            batches.append(actions)
        return await self._submit_paced(batches, chunks)

    async def cancel_order(self, order_id: str) -> dict[str, Any]:
        LOGGER.info("Canceling order with id: %s", order_id)
        return await self.submitter.submit_actions([self.builder.cancel_order(order_id)])

    async def cancel_orders(self, orders: Sequence[OpenOrder]) -> list[dict[str, Any]]:
        if not orders:
            LOGGER.info("No orders to cancel")
            return []
        LOGGER.info("Canceling all (%s) orders", len(orders))
        chunks = self._chunks(orders)
        batches = [[self.builder.cancel_order(order.order_id) for order in chunk] for chunk in chunks]
        return await self._submit_paced(batches, chunks)
