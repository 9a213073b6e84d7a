# app/core/recovery.py
"""
OTP-based password recovery.

Flow per email: forgot-password issues a code (REQUESTED), verify-otp marks it
verified (VERIFIED), reset-password consumes it and writes the new hash.
Expiry and attempt exhaustion drop the record back to "no request".

The ledger is process-local and mutated only by RecoveryService. Every check
and mutation on a record happens without an intervening await, so concurrent
handlers on the event loop never see a half-updated record.
"""
import asyncio
import datetime as dt
import logging
import secrets
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from app.core.accounts import AccountDirectory, normalize_email
from app.core.errors import (
    AccountNotFound,
    Expired,
    InvalidCode,
    MissingFields,
    NoActiveRequest,
    NotVerified,
    StoreUnavailable,
    TooManyAttempts,
    WeakPassword,
)
from app.core.notify import NotificationError
from app.core.security import hash_password

logger = logging.getLogger(__name__)

OTP_TTL = dt.timedelta(minutes=10)
MAX_ATTEMPTS = 3
SWEEP_INTERVAL_SECONDS = 5 * 60
MIN_PASSWORD_LENGTH = 8

Clock = Callable[[], dt.datetime]
Notifier = Callable[..., Awaitable[None]]


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def generate_otp() -> str:
    """Uniform 6-digit code in 100000..999999."""
    return str(100000 + secrets.randbelow(900000))


@dataclass
class OtpRecord:
    code: str
    issued_for: str
    owner_role: str
    expires_at: dt.datetime
    attempts: int = 0
    verified: bool = False

    def expired(self, now: dt.datetime) -> bool:
        return now > self.expires_at


class OtpLedger:
    """At most one live record per normalized email."""

    def __init__(self):
        self._records: Dict[str, OtpRecord] = {}

    def put(self, record: OtpRecord) -> None:
        self._records[record.issued_for] = record  # newer request always wins

    def get(self, email: str) -> Optional[OtpRecord]:
        return self._records.get(email)

    def discard(self, email: str) -> None:
        self._records.pop(email, None)

    def sweep(self, now: dt.datetime) -> int:
        stale = [email for email, rec in self._records.items() if rec.expired(now)]
        for email in stale:
            del self._records[email]
        return len(stale)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, email: str) -> bool:
        return email in self._records


class RecoveryService:
    """
    Forgot-password -> verify-OTP -> reset-password state machine.

    The account directory, the notifier that emails the code and the clock
    are passed in, so tests can swap them.
    """

    def __init__(
        self,
        directory: AccountDirectory,
        notifier: Notifier,
        clock: Clock = utcnow,
        ledger: OtpLedger | None = None,
    ):
        self.directory = directory
        self.notifier = notifier
        self.clock = clock
        self.ledger = ledger if ledger is not None else OtpLedger()
        self._sweeper: asyncio.Task | None = None

    async def request_recovery(self, email: str) -> OtpRecord:
        email = normalize_email(email)
        if not email:
            raise MissingFields("Email is required")

        account = await self.directory.find_by_email(email)
        if account is None:
            raise AccountNotFound()

        record = OtpRecord(
            code=generate_otp(),
            issued_for=email,
            owner_role=account.role,
            expires_at=self.clock() + OTP_TTL,
        )
        self.ledger.put(record)
        logger.info("[recovery] OTP issued for %s (%s)", email, account.role)

        try:
            await self.notifier(email, record.code, account.name, int(OTP_TTL.total_seconds() // 60))
        except NotificationError as e:
            # The record stays valid; only delivery failed.
            raise StoreUnavailable("Unable to send OTP email. Please try again.", details=str(e))
        return record

    def _live_record(self, email: str) -> OtpRecord:
        record = self.ledger.get(email)
        if record is None:
            raise NoActiveRequest()
        if record.expired(self.clock()):
            self.ledger.discard(email)
            raise Expired()
        return record

    def verify_code(self, email: str, submitted_code: str) -> OtpRecord:
        email = normalize_email(email)
        if not email or not submitted_code:
            raise MissingFields("Email and OTP are required")

        record = self._live_record(email)
        if record.attempts >= MAX_ATTEMPTS:
            self.ledger.discard(email)
            raise TooManyAttempts()

        if record.code != submitted_code.strip():
            record.attempts += 1
            if record.attempts >= MAX_ATTEMPTS:
                self.ledger.discard(email)
                logger.warning("[recovery] attempts exhausted for %s", email)
                raise TooManyAttempts()
            raise InvalidCode()

        record.verified = True
        return record

    async def reset_password(self, email: str, submitted_code: str, new_password: str) -> None:
        email = normalize_email(email)
        if not email or not submitted_code or not new_password:
            raise MissingFields("Email, OTP, and new password are required")

        record = self._live_record(email)
        if not record.verified or record.code != submitted_code.strip():
            raise NotVerified()
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise WeakPassword()

        password_hash = hash_password(new_password)
        await self.directory.update_password(record.owner_role, email, password_hash)
        # A concurrent request may have replaced the record during the await.
        if self.ledger.get(email) is record:
            self.ledger.discard(email)
        logger.info("[recovery] password reset for %s (%s)", email, record.owner_role)

    def sweep_expired(self) -> int:
        removed = self.ledger.sweep(self.clock())
        if removed:
            logger.info("[recovery] swept %d expired OTP(s)", removed)
        return removed

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep_expired()

    def start_sweeper(self, interval: float = SWEEP_INTERVAL_SECONDS) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever(interval))

    async def stop_sweeper(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
