"""Tests for contract enums."""

import pytest

from sluice.contracts.enums import Disposition, StageStatus, StatusClass


class TestStatusClass:
    @pytest.mark.parametrize(
        ("status_code", "expected"),
        [
            (200, StatusClass.SUCCESS),
            (204, StatusClass.SUCCESS),
            (404, StatusClass.CLIENT_ERROR),
            (429, StatusClass.CLIENT_ERROR),
            (500, StatusClass.SERVER_ERROR),
            (503, StatusClass.SERVER_ERROR),
        ],
    )
    def test_from_status_code(self, status_code: int, expected: StatusClass) -> None:
        assert StatusClass.from_status_code(status_code) == expected


class TestStageStatus:
    def test_terminal_states(self) -> None:
        terminal = {s for s in StageStatus if s.is_terminal}

        assert terminal == {StageStatus.COMPLETED, StageStatus.FAILED, StageStatus.SKIPPED, StageStatus.CANCELLED}


class TestDisposition:
    def test_wire_values(self) -> None:
        assert [d.value for d in Disposition] == ["continue", "skip-item", "abort-item", "abort-all"]
