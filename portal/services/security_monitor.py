"""
Brute-force and credential-stuffing detection.

Failed logins are counted per IP and per account in process memory. The
counters are best-effort: they are lost on restart and are not shared between
workers. Records older than the tracking window are swept on access and by a
periodic background task.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.models.activity_log import ActivityLog
from portal.models.user import User
from portal.services.activity_logger import ActivityType, log_activity
from portal.services.email_templates import send_templated_email
from portal.services.recipients import get_admin_emails

logger = structlog.get_logger()

TRACKING_WINDOW = timedelta(minutes=15)
IP_THRESHOLD = 10
CREDENTIAL_STUFFING_THRESHOLD = 5
ACCOUNT_THRESHOLD = 5

ALERT_IP_BRUTE_FORCE = "ip_brute_force"
ALERT_CREDENTIAL_STUFFING = "credential_stuffing"
ALERT_ACCOUNT_BRUTE_FORCE = "account_brute_force"
ALERT_ACCOUNT_LOCKED = "account_locked"

ALERT_TITLES = {
    ALERT_IP_BRUTE_FORCE: "Brute force attack detected",
    ALERT_CREDENTIAL_STUFFING: "Possible credential stuffing attack",
    ALERT_ACCOUNT_BRUTE_FORCE: "Repeated failed logins on one account",
    ALERT_ACCOUNT_LOCKED: "Account locked",
}


@dataclass
class _IpRecord:
    count: int = 0
    last_attempt: Optional[datetime] = None
    accounts: set = field(default_factory=set)
    alerted: set = field(default_factory=set)


@dataclass
class _AccountRecord:
    count: int = 0
    last_attempt: Optional[datetime] = None
    alerted: bool = False


@dataclass
class SecurityAlert:
    type: str
    ip_address: Optional[str]
    email: Optional[str]
    attempts: int
    accounts: list = field(default_factory=list)


class SecurityMonitor:
    def __init__(
        self,
        window: timedelta = TRACKING_WINDOW,
        ip_threshold: int = IP_THRESHOLD,
        stuffing_threshold: int = CREDENTIAL_STUFFING_THRESHOLD,
        account_threshold: int = ACCOUNT_THRESHOLD,
    ):
        self.window = window
        self.ip_threshold = ip_threshold
        self.stuffing_threshold = stuffing_threshold
        self.account_threshold = account_threshold
        self._ips: dict[str, _IpRecord] = {}
        self._accounts: dict[str, _AccountRecord] = {}

    def record_failed_login(
        self, email: Optional[str], ip: Optional[str], now: Optional[datetime] = None
    ) -> list[SecurityAlert]:
        """Count one failed login; return alerts whose threshold was just reached."""
        now = now or datetime.utcnow()
        self.sweep(now)
        email = (email or "").strip().lower() or None
        alerts: list[SecurityAlert] = []

        if ip:
            record = self._ips.setdefault(ip, _IpRecord())
            record.count += 1
            record.last_attempt = now
            if email:
                record.accounts.add(email)

            if record.count >= self.ip_threshold and ALERT_IP_BRUTE_FORCE not in record.alerted:
                record.alerted.add(ALERT_IP_BRUTE_FORCE)
                alerts.append(SecurityAlert(ALERT_IP_BRUTE_FORCE, ip, email, record.count, sorted(record.accounts)))
            if (
                len(record.accounts) >= self.stuffing_threshold
                and ALERT_CREDENTIAL_STUFFING not in record.alerted
            ):
                record.alerted.add(ALERT_CREDENTIAL_STUFFING)
                alerts.append(
                    SecurityAlert(ALERT_CREDENTIAL_STUFFING, ip, email, record.count, sorted(record.accounts))
                )

        if email:
            account = self._accounts.setdefault(email, _AccountRecord())
            account.count += 1
            account.last_attempt = now
            if account.count >= self.account_threshold and not account.alerted:
                account.alerted = True
                alerts.append(SecurityAlert(ALERT_ACCOUNT_BRUTE_FORCE, ip, email, account.count))

        return alerts

    def reset_account(self, email: Optional[str]) -> None:
        if email:
            self._accounts.pop(email.strip().lower(), None)

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Drop records idle for longer than the window; return how many were removed."""
        cutoff = (now or datetime.utcnow()) - self.window
        stale_ips = [ip for ip, r in self._ips.items() if r.last_attempt and r.last_attempt < cutoff]
        stale_accounts = [e for e, r in self._accounts.items() if r.last_attempt and r.last_attempt < cutoff]
        for ip in stale_ips:
            del self._ips[ip]
        for email in stale_accounts:
            del self._accounts[email]
        removed = len(stale_ips) + len(stale_accounts)
        if removed:
            logger.debug("security_monitor_swept", ips=len(stale_ips), accounts=len(stale_accounts))
        return removed

    def clear(self) -> None:
        self._ips.clear()
        self._accounts.clear()

    def get_ip_attempts(self, ip: str) -> int:
        record = self._ips.get(ip)
        return record.count if record else 0

    def get_account_attempts(self, email: str) -> int:
        record = self._accounts.get(email.strip().lower())
        return record.count if record else 0

    @property
    def tracked_ips(self) -> int:
        return len(self._ips)

    @property
    def tracked_accounts(self) -> int:
        return len(self._accounts)


security_monitor = SecurityMonitor()


async def _send_alert(db: AsyncSession, alert_type: str, message: str, data: dict) -> None:
    recipients = await get_admin_emails(db)
    if not recipients:
        logger.warning("security_alert_no_recipients", alert_type=alert_type)
        return
    payload = {
        "alert_type": alert_type,
        "alert_title": ALERT_TITLES.get(alert_type, "Security alert"),
        "alert_message": message,
        "detected_at": datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S UTC"),
    }
    payload.update(data)
    await send_templated_email(db, "security-alert", recipients, payload)


def _describe(alert: SecurityAlert) -> str:
    window = int(security_monitor.window.total_seconds() // 60)
    if alert.type == ALERT_IP_BRUTE_FORCE:
        return f"{alert.attempts} failed login attempts from IP {alert.ip_address} in the last {window} minutes."
    if alert.type == ALERT_CREDENTIAL_STUFFING:
        return (
            f"IP {alert.ip_address} attempted to log in to {len(alert.accounts)} different accounts "
            f"in the last {window} minutes."
        )
    return f"{alert.attempts} failed login attempts for {alert.email} in the last {window} minutes."


async def track_failed_login(
    db: AsyncSession,
    email: Optional[str],
    ip: Optional[str],
    user_agent: Optional[str] = None,
) -> list[SecurityAlert]:
    """Record a failed login and raise any alerts it triggers. Never raises."""
    alerts = security_monitor.record_failed_login(email, ip)
    for alert in alerts:
        logger.warning(
            "brute_force_detected",
            alert_type=alert.type,
            ip=alert.ip_address,
            email=alert.email,
            attempts=alert.attempts,
        )
        try:
            await log_activity(
                db,
                ActivityType.BRUTE_FORCE_DETECTED,
                ALERT_TITLES[alert.type],
                user_email=alert.email,
                details={
                    "alert_type": alert.type,
                    "ip_address": alert.ip_address,
                    "attempts": alert.attempts,
                    "accounts": alert.accounts,
                    "user_agent": user_agent,
                },
            )
            await _send_alert(
                db,
                alert.type,
                _describe(alert),
                {
                    "ip_address": alert.ip_address,
                    "email": alert.email,
                    "attempts": alert.attempts,
                    "accounts": alert.accounts,
                },
            )
        except Exception as exc:
            logger.error("security_alert_failed", alert_type=alert.type, error=str(exc))
    return alerts


async def track_account_lockout(
    db: AsyncSession,
    user: User,
    ip: Optional[str],
    attempts: int,
    locked_until: Optional[datetime],
) -> None:
    logger.warning("account_lockout_alert", user_id=str(user.id), ip=ip, attempts=attempts)
    try:
        await _send_alert(
            db,
            ALERT_ACCOUNT_LOCKED,
            f"The account {user.email} was locked after {attempts} failed login attempts.",
            {
                "ip_address": ip,
                "email": user.email,
                "attempts": attempts,
                "locked_until": locked_until.strftime("%Y-%m-%d %H:%M UTC") if locked_until else None,
            },
        )
    except Exception as exc:
        logger.error("security_alert_failed", alert_type=ALERT_ACCOUNT_LOCKED, error=str(exc))


async def get_security_stats(db: AsyncSession, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    since = now - timedelta(hours=24)

    async def _count(activity_type: ActivityType) -> int:
        result = await db.execute(
            select(func.count(ActivityLog.id)).where(
                ActivityLog.type == activity_type.value, ActivityLog.created_at >= since
            )
        )
        return result.scalar() or 0

    # lock_reason without an expiry is an indefinite admin lock
    locked = await db.execute(
        select(func.count(User.id)).where(
            or_(
                User.account_locked_until > now,
                and_(User.account_locked_until == None, User.lock_reason != None),  # noqa: E711
            ),
            User.deleted_at == None,  # noqa: E711
        )
    )
    return {
        "brute_force_attempts_24h": await _count(ActivityType.BRUTE_FORCE_DETECTED),
        "account_lockouts_24h": await _count(ActivityType.ACCOUNT_LOCKED),
        "currently_locked_accounts": locked.scalar() or 0,
        "tracked_ips": security_monitor.tracked_ips,
        "tracked_accounts": security_monitor.tracked_accounts,
        "thresholds": {
            "ip": security_monitor.ip_threshold,
            "credential_stuffing": security_monitor.stuffing_threshold,
            "account": security_monitor.account_threshold,
            "window_minutes": int(security_monitor.window.total_seconds() // 60),
        },
    }


async def run_periodic_sweep(interval_seconds: int) -> None:
    """Background task started from the app lifespan."""
    while True:
        await asyncio.sleep(interval_seconds)
        security_monitor.sweep()
