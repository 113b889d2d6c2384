"""
Settlement Module.
"""
from .handler import CompletionSettlementHandler, settlement_reference

__all__ = ["CompletionSettlementHandler", "settlement_reference"]
