from __future__ import annotations

import pytest

from signboard.core.logging import redact_path
from signboard.services.auth.roles import AdminLevel, at_least


def test_role_ordering() -> None:
    assert at_least(AdminLevel.OWNER, AdminLevel.MANAGER)
    assert at_least(AdminLevel.MANAGER, AdminLevel.MANAGER)
    assert not at_least(AdminLevel.USER, AdminLevel.MANAGER)


def test_role_labels_round_trip() -> None:
    for level in AdminLevel:
        assert AdminLevel.from_label(level.label) is level
    assert AdminLevel.from_label(" Owner ") is AdminLevel.OWNER
    with pytest.raises(ValueError):
        AdminLevel.from_label("root")


def test_redact_path_hides_ids_and_tokens() -> None:
    assert redact_path("/admin/business/12/screen/7/delete") == "/admin/business/[id]/screen/[id]/delete"
    assert redact_path("/join/" + "a" * 43) == "/join/[id]"
    assert redact_path("/admin/users") == "/admin/users"
