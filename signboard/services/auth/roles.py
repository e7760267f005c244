from __future__ import annotations

from enum import IntEnum


class AdminLevel(IntEnum):
    """Staff roles, ordered from least to most privileged."""

    USER = 1
    MANAGER = 2
    OWNER = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, value: str) -> "AdminLevel":
        # Enforce a stable, lowercased role vocabulary.
        normalized = value.strip().lower()
        for level in cls:
            if level.label == normalized:
                return level
        raise ValueError(f"Unsupported role: {value}")


def at_least(role: AdminLevel, required: AdminLevel) -> bool:
    return role >= required
