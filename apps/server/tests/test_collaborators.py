from __future__ import annotations

from unittest.mock import MagicMock

from editpulse.collaborators import (
    DiagnosticsBoard,
    DiagnosticsSource,
    EventHookRegistrar,
    HookRegistry,
)


def test_hook_registry_satisfies_protocol() -> None:
    assert isinstance(HookRegistry(), EventHookRegistrar)
    assert isinstance(DiagnosticsBoard(), DiagnosticsSource)


def test_run_hooks_invokes_each_callback_once() -> None:
    hooks = HookRegistry()
    a, b = MagicMock(), MagicMock()
    hooks.add_hook("after-save", a)
    hooks.add_hook("after-save", b)
    hooks.add_hook("after-save", a)
    assert hooks.run_hooks("after-save") == 2
    a.assert_called_once_with()
    b.assert_called_once_with()


def test_failing_callback_does_not_block_others() -> None:
    hooks = HookRegistry()
    bad = MagicMock(side_effect=RuntimeError("boom"))
    good = MagicMock()
    hooks.add_hook("find-file", bad)
    hooks.add_hook("find-file", good)
    assert hooks.run_hooks("find-file") == 1
    good.assert_called_once()


def test_remove_hook() -> None:
    hooks = HookRegistry()
    cb = MagicMock()
    hooks.add_hook("after-change", cb)
    hooks.remove_hook("after-change", cb)
    hooks.remove_hook("after-change", cb)
    hooks.remove_hook("never-added", cb)
    assert hooks.hook_names() == []
    assert hooks.run_hooks("after-change") == 0


def test_diagnostics_board_snapshot_is_a_copy() -> None:
    board = DiagnosticsBoard(["warning"])
    snapshot = board.current_severities()
    snapshot.append("error")
    assert board.current_severities() == ["warning"]
    assert board.publish(("error", "info")) == 2
    assert board.current_severities() == ["error", "info"]
