"""
Inbound message routing for rahl.

Public API:
    - InboundMessage: Normalized inbound chat message
    - Classification / ClassificationKind: Router decision
    - MessageRouter: Normalizes and classifies inbound events
    - MessageHandler: Acts on a classification and replies
"""

from .handler import INVALID_CODE_REPLY, USED_CODE_REPLY, MessageHandler
from .router import (
    IGNORED,
    PAIRING_CODE_PATTERN,
    Classification,
    ClassificationKind,
    InboundMessage,
    MessageRouter,
    extract_text,
)

__all__ = [
    "IGNORED",
    "INVALID_CODE_REPLY",
    "PAIRING_CODE_PATTERN",
    "USED_CODE_REPLY",
    "Classification",
    "ClassificationKind",
    "InboundMessage",
    "MessageHandler",
    "MessageRouter",
    "extract_text",
]
