from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text

from .extensions import Base


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class NetworkDeviceMapping(Base):
    """Operator-maintained IP → device name table, the persistent hint cache."""
    __tablename__ = "network_device_mapping"

    id = Column(Integer, primary_key=True)
    ip_address = Column(String(45), nullable=False, unique=True, index=True)
    device_name = Column(String(255), nullable=True)
    mac_address = Column(String(17), nullable=True, index=True)
    device_number = Column(Integer, nullable=True)
    device_type = Column(String(64), nullable=True)
    device_description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=now_utc)
    updated_at = Column(DateTime, nullable=False, default=now_utc, onupdate=now_utc)


class MacVendorMapping(Base):
    __tablename__ = "mac_vendor_mapping"

    id = Column(Integer, primary_key=True)
    oui = Column(String(8), nullable=False, unique=True, index=True)   # XX:XX:XX
    vendor = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=now_utc)
    updated_at = Column(DateTime, nullable=False, default=now_utc, onupdate=now_utc)


class NewDeviceHistory(Base):
    """Devices seen on the network whose MAC wasn't in network_device_mapping."""
    __tablename__ = "new_device_history"

    id = Column(Integer, primary_key=True)
    ip_address = Column(String(45), nullable=False, index=True)
    hostname = Column(String(255), nullable=True)
    mac_address = Column(String(17), nullable=True, index=True)
    vendor = Column(String(255), nullable=True)
    device_type = Column(String(64), nullable=True)
    os = Column(String(64), nullable=True)
    open_ports = Column(String(255), nullable=True)   # comma separated
    detection_date = Column(DateTime, nullable=False, default=now_utc, index=True)
