"""Declarative node and credential schema shown in the workflow editor."""

from __future__ import annotations

from typing import Any

CREDENTIAL_NAME = "cashuCoco"

CREDENTIAL_DESCRIPTION: dict[str, Any] = {
    "name": CREDENTIAL_NAME,
    "displayName": "Cashu Coco",
    "documentationUrl": "https://github.com/Egge21M/coco-cashu",
    "properties": [
        {
            "displayName": "Mint URL",
            "name": "mintUrl",
            "type": "string",
            "default": "https://mint.minteer.cash",
            "placeholder": "https://mint.example.com",
            "description": "Cashu mint base URL",
            "required": True,
        },
        {
            "displayName": "Seed",
            "name": "seed",
            "type": "string",
            "default": "",
            "description": "BIP39 mnemonic (12/24 words) or 64-byte hex string used to derive deterministic outputs",
            "typeOptions": {"password": True},
            "required": True,
        },
        {
            "displayName": "WebSocket URL",
            "name": "wsUrl",
            "type": "string",
            "default": "",
            "placeholder": "wss://mint.example.com/ws",
            "description": "Optional WebSocket endpoint for real-time subscriptions",
        },
    ],
    # GET {mintUrl}/v1/info must answer for the credential to be valid
    "test": {"method": "GET", "url": "/v1/info"},
}


def _show(resource: str, *operations: str) -> dict[str, Any]:
    show: dict[str, list[str]] = {"resource": [resource]}
    if operations:
        show["operation"] = list(operations)
    return {"show": show}


NODE_DESCRIPTION: dict[str, Any] = {
    "displayName": "Cashu Coco",
    "name": "cashuCoco",
    "group": ["transform"],
    "version": 1,
    "subtitle": '={{$parameter["operation"] + ": " + $parameter["resource"]}}',
    "description": "Work with Cashu e-cash wallets",
    "defaults": {"name": "Cashu Coco"},
    "inputs": ["main"],
    "outputs": ["main"],
    "usableAsTool": True,
    "credentials": [{"name": CREDENTIAL_NAME, "required": True}],
    "properties": [
        {
            "displayName": "Resource",
            "name": "resource",
            "type": "options",
            "noDataExpression": True,
            "options": [
                {"name": "Mint", "value": "mint"},
                {"name": "Wallet", "value": "wallet"},
                {"name": "Quote", "value": "quote"},
            ],
            "default": "wallet",
        },
        {
            "displayName": "Operation",
            "name": "operation",
            "type": "options",
            "noDataExpression": True,
            "displayOptions": _show("mint"),
            "options": [
                {"name": "Add Mint", "value": "addMint", "description": "Add mint by URL"},
                {"name": "Get Info", "value": "getInfo", "description": "Get mint info"},
            ],
            "default": "addMint",
        },
        {
            "displayName": "Operation",
            "name": "operation",
            "type": "options",
            "noDataExpression": True,
            "displayOptions": _show("wallet"),
            "options": [
                {"name": "Get Balances", "value": "getBalances"},
                {"name": "Send", "value": "send"},
                {"name": "Receive", "value": "receive"},
                {"name": "Receive From Untrusted Mint", "value": "receiveFromUntrustedMint"},
            ],
            "default": "getBalances",
        },
        {
            "displayName": "Operation",
            "name": "operation",
            "type": "options",
            "noDataExpression": True,
            "displayOptions": _show("quote"),
            "options": [
                {"name": "Create Mint Quote", "value": "createMintQuote"},
                {"name": "Redeem Mint Quote", "value": "redeemMintQuote"},
                {"name": "Create Melt Quote (Pay)", "value": "createMeltQuote"},
                {"name": "Pay Melt Quote", "value": "payMeltQuote"},
            ],
            "default": "createMintQuote",
        },
        # Common fields
        {
            "displayName": "Mint URL",
            "name": "mintUrl",
            "type": "string",
            "default": "={{$credentials.mintUrl}}",
            "description": "Target mint URL",
            "required": False,
        },
        # Wallet specific
        {
            "displayName": "Amount (sats)",
            "name": "amount",
            "type": "number",
            "typeOptions": {"minValue": 1},
            "default": 1,
            "required": True,
            "displayOptions": _show("wallet", "send"),
        },
        {
            "displayName": "Send Token Output",
            "name": "asToken",
            "type": "boolean",
            "default": True,
            "description": "Return encoded token when sending",
            "displayOptions": _show("wallet", "send"),
        },
        {
            "displayName": "Token (Encoded)",
            "name": "token",
            "type": "string",
            "default": "",
            "placeholder": "cashuB...",
            "displayOptions": _show("wallet", "receive", "receiveFromUntrustedMint"),
        },
        # Quote specific
        {
            "displayName": "Amount (sats)",
            "name": "quoteAmount",
            "type": "number",
            "typeOptions": {"minValue": 1},
            "default": 100,
            "displayOptions": _show("quote", "createMintQuote"),
        },
        {
            "displayName": "Quote ID",
            "name": "quoteId",
            "type": "string",
            "default": "",
            "placeholder": "quote id",
            "displayOptions": _show("quote", "redeemMintQuote", "payMeltQuote"),
        },
        {
            "displayName": "Invoice (BOLT11)",
            "name": "invoice",
            "type": "string",
            "default": "",
            "placeholder": "lnbc...",
            "displayOptions": _show("quote", "createMeltQuote"),
        },
    ],
}

OPERATIONS: dict[str, list[str]] = {
    "mint": ["addMint", "getInfo"],
    "wallet": ["getBalances", "send", "receive", "receiveFromUntrustedMint"],
    "quote": ["createMintQuote", "redeemMintQuote", "createMeltQuote", "payMeltQuote"],
}

# Older workflows saved the untrusted receive under this value
OPERATION_ALIASES = {"receive-untrusted": "receiveFromUntrustedMint"}
