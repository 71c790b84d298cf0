import pytest

from dual_stake_lab.access import AccessControl, Role, requires_role
from dual_stake_lab.errors import Unauthorized


class Vault:
    def __init__(self) -> None:
        self.access = AccessControl(["ops"])
        self.value = 0

    @requires_role(Role.OPERATOR)
    def set_value(self, caller: str, value: int) -> int:
        self.value = value
        return value


def test_operator_can_call_guarded_method() -> None:
    vault = Vault()
    assert vault.set_value("ops", 3) == 3
    assert vault.set_value.__name__ == "set_value"


def test_outsider_is_rejected_and_logged(caplog: pytest.LogCaptureFixture) -> None:
    vault = Vault()
    with caplog.at_level("WARNING"):
        with pytest.raises(Unauthorized):
            vault.set_value("mallory", 3)
    assert vault.value == 0
    assert "Rejected set_value by mallory" in caplog.text


def test_grant_and_revoke() -> None:
    vault = Vault()
    vault.access.grant(Role.OPERATOR, "alice")
    assert vault.set_value("alice", 1) == 1
    vault.access.revoke(Role.OPERATOR, "alice")
    assert not vault.access.has_role(Role.OPERATOR, "alice")
    with pytest.raises(PermissionError):
        vault.set_value("alice", 2)
