"""Device fingerprinting and per-user device registry."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from authcore.core.exceptions import AuthorizationError, ResourceNotFoundError
from authcore.core.timeutils import utcnow
from authcore.models.device import Device
from authcore.services.audit_service import audit_service

logger = logging.getLogger(__name__)

FINGERPRINT_LENGTH = 32


@dataclass
class UserAgentInfo:
    browser: Optional[str] = None
    os: Optional[str] = None
    device_type: Optional[str] = None
    device_name: Optional[str] = None


def parse_user_agent(user_agent: Optional[str]) -> UserAgentInfo:
    """Coarse substring classification of a User-Agent header."""
    if not user_agent:
        return UserAgentInfo()

    ua = user_agent
    browser = None
    if "Chrome" in ua and "Edg" not in ua:
        browser = "Chrome"
    elif "Firefox" in ua:
        browser = "Firefox"
    elif "Safari" in ua and "Chrome" not in ua:
        browser = "Safari"
    elif "Edg" in ua:
        browser = "Edge"
    elif "Opera" in ua:
        browser = "Opera"

    os_name = None
    if "Windows" in ua:
        os_name = "Windows"
    elif "Mac OS" in ua:
        os_name = "macOS"
    elif "Linux" in ua:
        os_name = "Linux"
    elif "Android" in ua:
        os_name = "Android"
    elif "iOS" in ua or "iPhone" in ua or "iPad" in ua:
        os_name = "iOS"

    if "Mobile" in ua or "Android" in ua or "iPhone" in ua:
        device_type = "mobile"
    elif "Tablet" in ua or "iPad" in ua:
        device_type = "tablet"
    else:
        device_type = "desktop"

    return UserAgentInfo(
        browser=browser,
        os=os_name,
        device_type=device_type,
        device_name=f"{browser or 'Unknown'} on {os_name or 'Unknown'}",
    )


def generate_device_id(user_agent: Optional[str], ip_address: Optional[str]) -> str:
    """Deterministic fingerprint of user-agent + IP, truncated."""
    data = f"{user_agent or ''}-{ip_address or ''}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


@dataclass
class DeviceInfo:
    """Connection metadata supplied by the transport layer."""

    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    parsed: UserAgentInfo = field(default_factory=UserAgentInfo)

    @classmethod
    def from_headers(cls, user_agent: Optional[str], ip_address: Optional[str]) -> "DeviceInfo":
        return cls(user_agent=user_agent, ip_address=ip_address, parsed=parse_user_agent(user_agent))

    @property
    def fingerprint(self) -> str:
        return generate_device_id(self.user_agent, self.ip_address)


class DeviceService:
    """Find-or-create devices and expose them to their owner."""

    @staticmethod
    def resolve(user_agent: Optional[str], ip_address: Optional[str]) -> str:
        return generate_device_id(user_agent, ip_address)

    @staticmethod
    def _bump(db: Session, device: Device, info: DeviceInfo) -> Device:
        db.execute(
            update(Device)
            .where(Device.id == device.id)
            .values(
                login_count=Device.login_count + 1,
                last_seen_at=utcnow(),
                ip_address=info.ip_address,
            )
        )
        db.commit()
        db.refresh(device)
        return device

    @staticmethod
    def find_or_create(db: Session, user_id: str, fingerprint: str, info: DeviceInfo) -> Device:
        """
        Idempotent on (user_id, fingerprint)

        Existing rows get last_seen_at/login_count bumped; new rows start at
        login_count=1.
        """
        device = (
            db.query(Device)
            .filter(Device.user_id == user_id, Device.device_id == fingerprint)
            .first()
        )
        if device:
            return DeviceService._bump(db, device, info)

        now = utcnow()
        device = Device(
            user_id=user_id,
            device_id=fingerprint,
            device_name=info.parsed.device_name,
            device_type=info.parsed.device_type,
            browser=info.parsed.browser,
            os=info.parsed.os,
            ip_address=info.ip_address,
            login_count=1,
            first_seen_at=now,
            last_seen_at=now,
        )
        db.add(device)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent login from the same fingerprint inserted first.
            db.rollback()
            device = (
                db.query(Device)
                .filter(Device.user_id == user_id, Device.device_id == fingerprint)
                .one()
            )
            return DeviceService._bump(db, device, info)

        db.refresh(device)
        logger.info("Registered new device %s for user %s", device.id, user_id)
        return device

    @staticmethod
    def list_devices(db: Session, user_id: str, page: int = 1, page_size: int = 20) -> Tuple[List[Device], int]:
        query = db.query(Device).filter(Device.user_id == user_id)
        total = query.count()
        devices = (
            query.order_by(Device.last_seen_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return devices, total

    @staticmethod
    def get_device(db: Session, device_pk: str, user_id: str) -> Device:
        device = db.query(Device).filter(Device.id == device_pk).first()
        if not device:
            raise ResourceNotFoundError("Device")
        if device.user_id != user_id:
            raise AuthorizationError("Device belongs to another user")
        return device

    @staticmethod
    def trust_device(db: Session, device_pk: str, user_id: str) -> Device:
        device = DeviceService.get_device(db, device_pk, user_id)
        device.is_trusted = True
        db.commit()
        db.refresh(device)

        audit_service.log_event(
            db, action="device.trusted", entity="Device", entity_id=device.id, user_id=user_id
        )
        return device

    @staticmethod
    def block_device(db: Session, device_pk: str, user_id: str, reason: Optional[str] = None) -> Device:
        device = DeviceService.get_device(db, device_pk, user_id)
        if not device.is_blocked:
            device.is_blocked = True
            device.is_trusted = False
            device.blocked_at = utcnow()
            device.blocked_by = user_id
            device.blocked_reason = reason
            db.commit()
            db.refresh(device)

            audit_service.log_event(
                db,
                action="device.blocked",
                entity="Device",
                entity_id=device.id,
                user_id=user_id,
                new_values={"reason": reason},
            )
        return device


device_service = DeviceService()
