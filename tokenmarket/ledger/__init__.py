"""Ledger access: typed gateway, relay transport and event stream."""

from tokenmarket.ledger.gateway import LedgerGateway
from tokenmarket.ledger.transport import HTTPLedgerTransport
from tokenmarket.ledger.types import (
    AssetData,
    AuctionInfo,
    LedgerTransport,
    RawCommercialFields,
    TokenTransferred,
    Trait,
)

__all__ = [
    "LedgerGateway",
    "HTTPLedgerTransport",
    "LedgerTransport",
    "AssetData",
    "AuctionInfo",
    "RawCommercialFields",
    "TokenTransferred",
    "Trait",
]
