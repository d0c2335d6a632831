"""Risk escalation policy for protected tables."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from schemagate.config import Settings, get_settings
from schemagate.drift.types import RiskLevel


@dataclass(frozen=True, slots=True)
class RiskPolicy:
    """Locked tables never receive SAFE changes; risk is only ever raised."""

    locked_tables: frozenset[str] = frozenset()

    @classmethod
    def of(cls, tables: Iterable[str]) -> RiskPolicy:
        return cls(locked_tables=frozenset(name.strip().lower() for name in tables if name and name.strip()))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> RiskPolicy:
        return cls.of((settings or get_settings()).schema_locked_tables)

    def is_locked(self, table: str | None) -> bool:
        return bool(table) and table.lower() in self.locked_tables

    def floor(self, table: str | None, risk: RiskLevel) -> RiskLevel:
        """Raise SAFE to CAUTION on locked tables; other levels pass through."""

        if risk == "SAFE" and self.is_locked(table):
            return "CAUTION"
        return risk
