"""
Consensus - multi-model signal agreement, validation and cooldown gate.
"""

from src.services.consensus.models import RawProposal, ConsensusSignal
from src.services.consensus.matcher import ConsensusMatcher, normalize_proposal
from src.services.consensus.validation import SignalValidator, RejectReason
from src.services.consensus.cooldown import CooldownGate, CooldownDecision, LastSignalRecord
from src.services.consensus.tv_confirmation import TVConfirmationService, TVWebhookPayload

__all__ = [
    "RawProposal",
    "ConsensusSignal",
    "ConsensusMatcher",
    "normalize_proposal",
    "SignalValidator",
    "RejectReason",
    "CooldownGate",
    "CooldownDecision",
    "LastSignalRecord",
    "TVConfirmationService",
    "TVWebhookPayload",
]
