"""
leadflow/services/runtime_settings.py — Operator toggles read once per sweep.

The system_settings table holds switches an operator can flip while workers
are running. Each sweep takes an immutable SettingsSnapshot at its start and
passes it down, so one run never sees a toggle change halfway through.

Missing or unreadable values fall back to the safe side: no automatic sending,
approval required.
"""

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from leadflow.db import repository

logger = logging.getLogger(__name__)

AUTO_OUTREACH_ENABLED = "auto_outreach_enabled"
AUTO_DELIVERY_ENABLED = "auto_delivery_enabled"
REQUIRE_APPROVAL_FOR_OUTREACH = "require_approval_for_outreach"
REQUIRE_APPROVAL_FOR_DELIVERY = "require_approval_for_delivery"

DEFAULT_SETTINGS: dict[str, tuple[bool, str]] = {
    AUTO_OUTREACH_ENABLED: (
        False,
        "Send outreach drafts without manual approval. "
        "Takes effect only while require_approval_for_outreach is off",
    ),
    AUTO_DELIVERY_ENABLED: (
        False,
        "Send generated reply follow-ups without manual approval. "
        "Takes effect only while require_approval_for_delivery is off",
    ),
    REQUIRE_APPROVAL_FOR_OUTREACH: (True, "Outreach drafts need approved_for_sending before dispatch"),
    REQUIRE_APPROVAL_FOR_DELIVERY: (True, "Follow-ups need approved_for_delivery before dispatch"),
}


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off"):
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return default


@dataclass(frozen=True)
class SettingsSnapshot:
    auto_outreach_enabled: bool = False
    auto_delivery_enabled: bool = False
    require_approval_for_outreach: bool = True
    require_approval_for_delivery: bool = True

    @property
    def auto_send(self) -> bool:
        """Outreach drafts may be sent without per-campaign approval."""
        return self.auto_outreach_enabled and not self.require_approval_for_outreach

    @property
    def auto_deliver(self) -> bool:
        """Reply follow-ups may be sent without per-message approval."""
        return self.auto_delivery_enabled and not self.require_approval_for_delivery

    def as_dict(self) -> dict[str, Any]:
        return {
            AUTO_OUTREACH_ENABLED: self.auto_outreach_enabled,
            AUTO_DELIVERY_ENABLED: self.auto_delivery_enabled,
            REQUIRE_APPROVAL_FOR_OUTREACH: self.require_approval_for_outreach,
            REQUIRE_APPROVAL_FOR_DELIVERY: self.require_approval_for_delivery,
            "auto_send": self.auto_send,
            "auto_deliver": self.auto_deliver,
            "held_by_approval": self.held_by_approval(),
        }

    def held_by_approval(self) -> list[str]:
        """Auto toggles that are on but still gated by their approval toggle."""
        held = []
        if self.auto_outreach_enabled and not self.auto_send:
            held.append(AUTO_OUTREACH_ENABLED)
        if self.auto_delivery_enabled and not self.auto_deliver:
            held.append(AUTO_DELIVERY_ENABLED)
        return held


def load_snapshot(db: Session) -> SettingsSnapshot:
    """Read the current toggles into an immutable snapshot."""
    stored = repository.get_settings_map(db)
    values = {
        key: _as_bool(stored.get(key), default)
        for key, (default, _) in DEFAULT_SETTINGS.items()
    }
    snapshot = SettingsSnapshot(**values)
    logger.debug("Settings snapshot: %s", snapshot)
    return snapshot


def seed_default_settings(db: Session) -> int:
    """Insert any missing toggles with their fail-closed defaults. Returns rows added."""
    added = 0
    for key, (default, description) in DEFAULT_SETTINGS.items():
        if repository.insert_setting_if_missing(db, key, default, description):
            added += 1
    if added:
        logger.info("Seeded %d default system settings", added)
    return added


def set_setting(db: Session, key: str, value: bool) -> SettingsSnapshot:
    """
    Update one known toggle and return the resulting snapshot.

    Automatic sending needs both the auto toggle on and its approval toggle
    off. A warning is logged while an auto toggle is on but still held back.
    """
    if key not in DEFAULT_SETTINGS:
        raise KeyError(f"Unknown setting: {key}")
    repository.upsert_setting(db, key, bool(value), DEFAULT_SETTINGS[key][1])
    logger.info("System setting %s set to %s", key, value)

    snapshot = load_snapshot(db)
    for held in snapshot.held_by_approval():
        logger.warning("%s is on but has no effect while its approval toggle is on", held)
    return snapshot
