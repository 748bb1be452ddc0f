"""
Pairing code registry for rahl.

This module issues the short numeric codes that link a chat account to the
bot. A code is generated on request (usually over HTTP), handed to the user
out-of-band, and redeemed when the user sends it to the bot in a chat.

Security considerations:
- Codes are drawn uniformly from the 8-digit space using the secrets module
- A live code is never overwritten by a colliding new one
- Codes expire after a fixed time-to-live, checked on every read
- Redemption is exactly-once, even with concurrent redeemers
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)

CODE_LENGTH = 8
DEFAULT_TTL_SECONDS = 600


class PairingStatus(str, Enum):
    """Status of a pairing request."""

    PENDING = "pending"        # Issued, waiting to be redeemed
    COMPLETED = "completed"    # Redeemed once; cannot be redeemed again
    EXPIRED = "expired"        # Time-to-live elapsed before redemption
    INVALID = "invalid"        # Unknown code (reported, never stored)


@dataclass
class PairingRequest:
    """
    A single pairing request keyed by its code.

    Attributes:
        code: 8-digit numeric code (crypto-random, zero padded).
        owner_phone_number: Phone number the code was issued for.
        user_id: Caller-supplied user id, defaults to the phone number.
        requested_at: When the code was generated.
        expires_at: When the code stops being redeemable.
        status: Current status of the request.
        linked_identity: Chat identity that redeemed the code.
        linked_display_name: Display name of the redeemer, if known.
        completed_at: When the code was redeemed.
    """

    code: str
    owner_phone_number: str
    user_id: str
    requested_at: datetime
    expires_at: datetime
    status: PairingStatus = PairingStatus.PENDING
    linked_identity: str | None = None
    linked_display_name: str | None = None
    completed_at: datetime | None = None

    @property
    def expires_in(self) -> int:
        """Lifetime of the code in whole seconds."""
        return int((self.expires_at - self.requested_at).total_seconds())

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "phoneNumber": self.owner_phone_number,
            "userId": self.user_id,
            "requestedAt": self.requested_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "status": self.status.value,
            "linkedIdentity": self.linked_identity,
            "linkedDisplayName": self.linked_display_name,
        }


@dataclass(frozen=True)
class RedeemResult:
    """Outcome of a successful redemption, for notifying interested parties."""

    code: str
    owner_phone_number: str
    user_id: str
    linked_identity: str | None
    linked_display_name: str | None


class PairingError(Exception):
    """Base exception for pairing-related errors."""
    pass


class CodeNotFound(PairingError):
    """Raised when a pairing code doesn't exist or has expired."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Pairing code '{code}' not found")


class CodeAlreadyUsed(PairingError):
    """Raised when attempting to redeem a code that is not pending."""

    def __init__(self, code: str, status: PairingStatus):
        self.code = code
        self.status = status
        super().__init__(f"Pairing code '{code}' has status {status.value}")


class PairingRegistry:
    """
    In-memory, time-expiring map from pairing code to PairingRequest.

    The registry owns code generation and every status transition. Records
    never leave it by reference; all read operations return copies.

    Concurrency:
        Mutations take a per-code asyncio lock, so redemptions of different
        codes never serialize on each other while two redemptions of the same
        code are strictly ordered. The first redeemer to observe PENDING wins.

    Example:
        registry = PairingRegistry(ttl_seconds=600)

        request = await registry.generate("+15551234567")
        print(f"Send {request.code} to the bot within {request.expires_in}s")

        result = await registry.redeem(request.code, "15551234567@s.whatsapp.net", "Ann")
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the registry.

        Args:
            ttl_seconds: Lifetime of a generated code.
            clock: Returns the current UTC time. Injected by tests.
        """
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be at least 1")
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._requests: dict[str, PairingRequest] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._generate_lock = asyncio.Lock()
        self._sweep_task: asyncio.Task | None = None

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    def _get_lock(self, code: str) -> asyncio.Lock:
        if code not in self._locks:
            self._locks[code] = asyncio.Lock()
        return self._locks[code]

    def _live(self, code: str) -> PairingRequest | None:
        """Return the stored record if it exists and has not expired."""
        request = self._requests.get(code)
        if request is None:
            return None
        if request.is_expired(self._clock()):
            if request.status == PairingStatus.PENDING:
                request.status = PairingStatus.EXPIRED
            return None
        return request

    async def generate(
        self,
        owner_phone_number: str,
        user_id: str | None = None,
    ) -> PairingRequest:
        """
        Generate a new pairing code for a phone number.

        Args:
            owner_phone_number: Phone number the code is issued for.
            user_id: Optional caller-side user id (defaults to the phone).

        Returns:
            A copy of the stored PairingRequest, status PENDING.

        Raises:
            ValueError: If the phone number is empty.
        """
        owner_phone_number = (owner_phone_number or "").strip()
        if not owner_phone_number:
            raise ValueError("Phone number is required")

        async with self._generate_lock:
            code = self._generate_code()
            # Retry while the code belongs to a live entry; expired ones may be reused
            while self._live(code) is not None:
                logger.debug("Pairing code collision, regenerating")
                code = self._generate_code()

            now = self._clock()
            request = PairingRequest(
                code=code,
                owner_phone_number=owner_phone_number,
                user_id=user_id or owner_phone_number,
                requested_at=now,
                expires_at=now + self._ttl,
            )
            self._requests[code] = request

        logger.info("Generated pairing code for %s", owner_phone_number)
        return replace(request)

    async def redeem(
        self,
        code: str,
        redeemer_identity: str | None,
        redeemer_display_name: str | None = None,
    ) -> RedeemResult:
        """
        Redeem a pending code, linking it to the redeemer's identity.

        Args:
            code: The pairing code.
            redeemer_identity: Chat identity of the sender.
            redeemer_display_name: Display name of the sender, if any.

        Returns:
            RedeemResult with the original owner metadata.

        Raises:
            CodeNotFound: If the code is unknown or past its TTL.
            CodeAlreadyUsed: If the code is not pending.
        """
        code = code.strip()
        if code not in self._requests:
            # Unknown codes never get a lock entry
            raise CodeNotFound(code)
        async with self._get_lock(code):
            request = self._live(code)
            if request is None:
                raise CodeNotFound(code)
            if request.status != PairingStatus.PENDING:
                raise CodeAlreadyUsed(code, request.status)

            request.status = PairingStatus.COMPLETED
            request.linked_identity = redeemer_identity
            request.linked_display_name = redeemer_display_name
            request.completed_at = self._clock()

            result = RedeemResult(
                code=code,
                owner_phone_number=request.owner_phone_number,
                user_id=request.user_id,
                linked_identity=redeemer_identity,
                linked_display_name=redeemer_display_name,
            )

        logger.info(
            "Pairing code redeemed for %s by %s",
            result.owner_phone_number,
            redeemer_identity or "administrator",
        )
        return result

    async def complete(self, code: str) -> RedeemResult:
        """Administrative override: complete a code without a chat redeemer."""
        return await self.redeem(code, None, None)

    def status(self, code: str) -> PairingRequest | None:
        """
        Look up a code.

        Returns:
            A copy of the PairingRequest, or None if unknown or expired.
        """
        request = self._live(code.strip())
        return replace(request) if request is not None else None

    def list(self) -> tuple[tuple[str, PairingRequest], ...]:
        """
        Snapshot of live (non-expired) entries, oldest first.

        The snapshot is taken at call time and can be iterated any number
        of times; later registry mutations are not reflected in it.
        """
        live = [
            (code, replace(request))
            for code in list(self._requests)
            if (request := self._live(code)) is not None
        ]
        live.sort(key=lambda item: item[1].requested_at)
        return tuple(live)

    def cleanup_expired(self) -> int:
        """
        Drop entries past their TTL.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [
            code for code, request in self._requests.items()
            if request.is_expired(now)
        ]
        for code in expired:
            del self._requests[code]
        orphaned = [
            code for code, lock in self._locks.items()
            if code not in self._requests and not lock.locked()
        ]
        for code in orphaned:
            del self._locks[code]
        if expired:
            logger.debug("Removed %d expired pairing codes", len(expired))
        return len(expired)

    def start_sweeper(self, interval_seconds: float) -> None:
        """Start a background task that periodically drops expired codes."""
        if self._sweep_task is not None and not self._sweep_task.done():
            logger.warning("Pairing sweeper already running")
            return

        async def sweep_loop():
            while True:
                await asyncio.sleep(interval_seconds)
                try:
                    self.cleanup_expired()
                except Exception as e:
                    logger.error("Pairing sweep error: %s", e)

        self._sweep_task = asyncio.create_task(sweep_loop())

    async def stop_sweeper(self) -> None:
        """Stop the background sweep task."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    def __len__(self) -> int:
        return len(self.list())

    @staticmethod
    def _generate_code() -> str:
        """Generate a uniformly random, zero-padded 8-digit code."""
        return f"{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}"
