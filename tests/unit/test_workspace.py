"""Unit tests for the workspace."""

from pipeliner.workspace import FAILED, PENDING, READY, Workspace


def test_has_reflects_exactly_what_was_set() -> None:
    ws = Workspace()
    ws.set_variable("a", "1")
    ws.set_fact("built", True)
    ws.set_choice("prod", "prod")

    assert ws.has_variable("a") and not ws.has_variable("A")
    assert ws.has_fact("built") and not ws.has_fact("a")
    assert ws.has_choice("prod") and not ws.has_choice("staging")


def test_fact_status() -> None:
    ws = Workspace()
    assert ws.get_fact_status("x") == PENDING

    ws.set_fact("x", False)
    assert ws.get_fact_status("x") == FAILED
    ws.set_fact("x", "failed")
    assert ws.get_fact_status("x") == FAILED

    ws.set_fact("x", True)
    assert ws.get_fact_status("x") == READY
    ws.set_fact("x", "")
    assert ws.get_fact_status("x") == READY


def test_last_step_result_tracks_most_recent_record() -> None:
    ws = Workspace()
    assert ws.get_last_step_result() is None

    ws.set_step_result(0, True, 0)
    ws.set_step_result(3, False, 2)

    assert ws.get_last_step_result().success is False
    assert ws.get_last_step_result().exit_code == 2
    assert ws.get_step_result(0).success is True


def test_clone_is_deep_both_ways() -> None:
    ws = Workspace()
    ws.set_variable("v", "root")
    ws.set_fact("f", True)
    ws.set_step_result(0, True)

    clone = ws.clone()
    clone.set_variable("v", "branch")
    clone.set_variable("new", "x")
    clone.set_fact("f", False)
    clone.set_choice("c", "c")
    clone.set_step_result(1000, False)

    assert ws.get_variable("v") == "root"
    assert not ws.has_variable("new")
    assert ws.get_fact("f") is True
    assert not ws.has_choice("c")
    assert ws.get_step_result(1000) is None
    assert ws.last_step_index == 0

    ws.set_variable("later", "y")
    assert not clone.has_variable("later")


def test_all_facts_and_variables_are_copies() -> None:
    ws = Workspace()
    ws.set_variable("a", "1")
    snapshot = ws.all_variables()
    snapshot["a"] = "changed"
    assert ws.get_variable("a") == "1"
