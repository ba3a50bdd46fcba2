import pytest

from snap import ui


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(0, "0s"), (45, "45s"), (154, "2m 34s"), (120, "2m"), (4320, "1h 12m"), (3600, "1h")],
)
def test_format_duration(seconds: float, expected: str) -> None:
    assert ui.format_duration(seconds) == expected


def test_startup_summary_line() -> None:
    assert (
        ui.format_startup_summary("auth", "claude", 3, 1, "starting TASK2")
        == "snap: auth | claude | 3 tasks (1 done) | starting TASK2"
    )


def test_task_summary_wording() -> None:
    assert ui.format_task_summary(0, 0) == "0 tasks"
    assert ui.format_task_summary(1, 0) == "1 task"
    assert ui.format_task_summary(4, 2) == "4 tasks (2 done)"


def test_no_color_env_disables_styling(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NO_COLOR", "1")

    assert ui.step_numbered(2, 10, "Ensure completeness") == "\n▶ Step 2/10: Ensure completeness\n"
    assert ui.strip_colors("\x1b[1mbold\x1b[0m") == "bold"


def test_interrupted_with_context_mentions_resume(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NO_COLOR", "1")

    text = ui.interrupted_with_context("Stopped by user", 4, 10)

    assert "Stopped by user" in text
    assert "State saved at step 4/10 - resume with 'snap run'" in text
