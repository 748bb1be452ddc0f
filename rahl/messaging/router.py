"""Inbound message normalization and classification.

Transport payloads come in two shapes: the nested form the messaging
service emits (``key.remoteJid``, ``message.conversation`` ...) and a flat
form (``sender``, ``text``) used by simpler transports and tests. Both are
reduced to an InboundMessage, whose text is then classified as a pairing
code, an admin command, a user command or plain chat.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from rahl.pairing import CODE_LENGTH

PAIRING_CODE_PATTERN = re.compile(rf"^\d{{{CODE_LENGTH}}}$")


class ClassificationKind(str, Enum):
    PAIRING = "pairing"
    ADMIN_COMMAND = "admin_command"
    USER_COMMAND = "user_command"
    PLAIN_TEXT = "plain_text"
    IGNORED = "ignored"


@dataclass
class InboundMessage:
    """
    Normalized inbound chat message.

    Attributes:
        sender: Chat identity the message came from (reply target).
        text: Plain text extracted from the payload ("" if none).
        from_self: True when the bot itself sent the message.
        display_name: Sender's display name, if the payload carries one.
        message_id: Transport message id, if any.
        timestamp: When the message was sent.
        metadata: Anything else worth keeping from the payload.
    """

    sender: str
    text: str
    from_self: bool = False
    display_name: str | None = None
    message_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Classification:
    """What the router decided an inbound event is."""

    kind: ClassificationKind
    text: str = ""
    message: InboundMessage | None = None
    code: str | None = None

    @property
    def is_command(self) -> bool:
        return self.kind in (ClassificationKind.ADMIN_COMMAND, ClassificationKind.USER_COMMAND)


IGNORED = Classification(ClassificationKind.IGNORED)


def extract_text(content: dict[str, Any] | None) -> str:
    """
    Text of a nested message payload.

    Takes the first populated field among the direct body, the extended
    (quoted/linked) body and a media caption.
    """
    if not content:
        return ""
    candidates = (
        content.get("conversation"),
        (content.get("extendedTextMessage") or {}).get("text"),
        (content.get("imageMessage") or {}).get("caption"),
        (content.get("videoMessage") or {}).get("caption"),
        (content.get("documentMessage") or {}).get("caption"),
    )
    for text in candidates:
        if text:
            return text
    return ""


class MessageRouter:
    """
    Classifies inbound events.

    Attributes:
        command_prefix: Prefix that marks a command (default ".").
        admin_identity: Chat identity allowed to run admin commands.
        pairing_phrase: Optional phrase accepted in front of a pairing code.

    Example:
        router = MessageRouter(command_prefix=".", admin_identity="1555@s.whatsapp.net")
        result = router.classify({"sender": "1666@s.whatsapp.net", "text": ".ping"})
        assert result.kind == ClassificationKind.USER_COMMAND
    """

    def __init__(
        self,
        command_prefix: str = ".",
        admin_identity: str | None = None,
        pairing_phrase: str | None = None,
        self_identity: str | None = None,
    ) -> None:
        if not command_prefix:
            raise ValueError("command_prefix cannot be empty")
        self.command_prefix = command_prefix
        self.admin_identity = admin_identity or None
        self.pairing_phrase = (pairing_phrase or "").strip() or None
        self.self_identity = self_identity

    def normalize(self, raw: dict[str, Any]) -> InboundMessage | None:
        """
        Convert a transport payload to an InboundMessage.

        Returns:
            The message, or None if the payload names no sender.
        """
        if "key" in raw or "message" in raw:
            key = raw.get("key") or {}
            sender = key.get("remoteJid") or ""
            from_self = bool(key.get("fromMe"))
            display_name = raw.get("pushName")
            message_id = key.get("id")
            text = extract_text(raw.get("message"))
            timestamp = raw.get("messageTimestamp")
        else:
            sender = raw.get("sender") or raw.get("senderIdentity") or ""
            from_self = bool(raw.get("from_self") or raw.get("fromSelf"))
            display_name = raw.get("display_name") or raw.get("displayName")
            message_id = raw.get("id")
            text = raw.get("text") or ""
            timestamp = raw.get("timestamp")

        if not sender:
            return None

        if isinstance(timestamp, (int, float)):
            when = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        elif isinstance(timestamp, datetime):
            when = timestamp
        else:
            when = datetime.now(timezone.utc)

        return InboundMessage(
            sender=sender,
            text=text.strip(),
            from_self=from_self,
            display_name=display_name,
            message_id=str(message_id) if message_id else None,
            timestamp=when,
        )

    def classify(self, raw: dict[str, Any] | InboundMessage) -> Classification:
        """Classify an inbound event (raw payload or normalized message)."""
        message = raw if isinstance(raw, InboundMessage) else self.normalize(raw)
        if message is None or not message.text:
            return IGNORED
        if message.from_self or self._is_self(message.sender):
            return IGNORED

        text = message.text
        code = self.match_pairing_code(text)
        if code is not None:
            return Classification(ClassificationKind.PAIRING, text, message, code)

        if text.startswith(self.command_prefix):
            if self.is_admin(message.sender):
                return Classification(ClassificationKind.ADMIN_COMMAND, text, message)
            return Classification(ClassificationKind.USER_COMMAND, text, message)

        return Classification(ClassificationKind.PLAIN_TEXT, text, message)

    def match_pairing_code(self, text: str) -> str | None:
        """Return the code if ``text`` is a bare code or phrase + code."""
        candidate = text.strip()
        if self.pairing_phrase and candidate.lower().startswith(self.pairing_phrase.lower()):
            candidate = candidate[len(self.pairing_phrase):].strip()
        if PAIRING_CODE_PATTERN.match(candidate):
            return candidate
        return None

    def is_admin(self, identity: str) -> bool:
        return self.admin_identity is not None and _bare(identity) == _bare(self.admin_identity)

    def _is_self(self, identity: str) -> bool:
        if not self.self_identity:
            return False
        # Device-qualified ids ("123:4@host") name the same account as "123@host"
        return _bare(identity) == _bare(self.self_identity)


def _bare(identity: str) -> str:
    user, _, host = identity.partition("@")
    return f"{user.split(':', 1)[0]}@{host}"
