import time

import pytest

from conftest import (
    ROOT,
    FakeEnvironments,
    FakeRepository,
    FakeRunner,
    FakeSearch,
    directory,
    make_field,
    make_schema,
    script,
)
from omakure.controller import (
    ExecutionKind,
    ExecutionStatus,
    HistoryFocus,
    Screen,
    clamp_move,
    wrap_move,
)
from omakure.errors import EmptyBlock, ExecutionError, ValueRequired, WidgetError
from omakure.folder_widget import WidgetData
from omakure.history import HistoryStore
from omakure.ports import IndexState, ScriptRunOutput, SearchResult, SearchStatus
from omakure.schemas import HistoryEntry

DEPLOY = ROOT / "deploy.sh"
OPS = ROOT / "ops"
NESTED = OPS / "nested.sh"
PING = ROOT / "ping.py"


def _repo():
    tree = {
        ROOT: [directory(OPS), script(DEPLOY), script(PING)],
        OPS: [script(NESTED)],
    }
    schemas = {
        DEPLOY: make_schema(
            "Deploy",
            fields=[
                make_field("count", order=2, kind="number"),
                make_field("target", order=1, required=True),
            ],
        ),
        PING: make_schema("Ping"),
        NESTED: make_schema("Nested", fields=[make_field("flag", kind="bool")]),
    }
    return FakeRepository(tree=tree, schemas=schemas)


def _entry(ts, script_name="deploy.sh", **kwargs):
    data = {"timestamp": ts, "script": script_name, "args": [], "success": True}
    data.update(kwargs)
    return HistoryEntry(**data)


@pytest.mark.parametrize("length", [0, 1, 5])
@pytest.mark.parametrize("delta", [-100, -1, 0, 1, 3, 100])
def test_clamp_move_stays_in_range(length, delta):
    for start in range(max(length, 1)):
        result = clamp_move(start, delta, length)
        if length == 0:
            assert result == 0
        else:
            assert 0 <= result <= length - 1


def test_wrap_move():
    assert wrap_move(0, -1, 3) == 2
    assert wrap_move(2, 1, 3) == 0
    assert wrap_move(0, 5, 0) == 0


def test_initial_state(build_controller):
    ctl = build_controller(repository=_repo())
    assert ctl.screen is Screen.SCRIPT_SELECT
    assert [e.path.name for e in ctl.navigation.entries] == ["ops", "deploy.sh", "ping.py"]
    assert ctl.navigation.selection == 0
    assert ctl.navigation.schema_preview is None


def test_selection_saturates_and_updates_preview(build_controller):
    ctl = build_controller(repository=_repo())
    ctl.move_selection(-5)
    assert ctl.navigation.selection == 0
    ctl.move_selection(1)
    assert ctl.navigation.schema_preview.name == "Deploy"
    assert [f.name for f in ctl.navigation.schema_preview.fields] == ["target", "count"]
    ctl.move_selection(50)
    assert ctl.navigation.selection == 2
    assert ctl.navigation.schema_preview.name == "Ping"


def test_preview_error_stays_inline(build_controller):
    ctl = build_controller(repository=_repo())
    ctl.repository.schemas[DEPLOY] = EmptyBlock()
    ctl.move_selection(1)
    assert ctl.screen is Screen.SCRIPT_SELECT
    assert ctl.navigation.schema_preview is None
    assert ctl.navigation.schema_preview_error == "Schema block is empty"


def test_empty_listing_is_noop(build_controller):
    ctl = build_controller(repository=FakeRepository(tree={ROOT: []}))
    ctl.move_selection(3)
    ctl.enter_selected()
    assert ctl.navigation.selection == 0
    assert ctl.screen is Screen.SCRIPT_SELECT


def test_enter_directory_and_back_up(build_controller):
    ctl = build_controller(repository=_repo())
    ctl.enter_selected()
    assert ctl.navigation.current_dir == OPS
    assert [e.path for e in ctl.navigation.entries] == [NESTED]
    assert ctl.navigation.schema_preview.name == "Nested"
    ctl.navigate_up()
    assert ctl.navigation.current_dir == ROOT
    ctl.navigate_up()
    assert ctl.navigation.current_dir == ROOT


def test_listing_failure_shows_error_screen(build_controller):
    repo = _repo()
    repo.failing_dirs.add(OPS)
    ctl = build_controller(repository=repo)
    ctl.enter_selected()
    assert ctl.screen is Screen.ERROR
    assert "permission denied" in ctl.error_message
    ctl.dismiss_error()
    assert ctl.screen is Screen.SCRIPT_SELECT
    assert ctl.error_message is None
    assert ctl.navigation.current_dir == ROOT
    assert [e.path for e in ctl.navigation.entries] == [OPS, DEPLOY, PING]


def test_open_script_seeds_form_from_active_env(build_controller):
    envs = FakeEnvironments(files={"prod": "TARGET=prod\n"}, active="prod")
    ctl = build_controller(repository=_repo(), environments=envs)
    ctl.move_selection(1)
    ctl.enter_selected()
    fi = ctl.field_input
    assert ctl.screen is Screen.FIELD_INPUT
    assert fi.schema_name == "Deploy"
    assert [f.name for f in fi.fields] == ["target", "count"]
    assert fi.field_inputs == ["prod", ""]
    assert fi.selected_script == DEPLOY


def test_open_uses_schema_cache(build_controller):
    repo = _repo()
    ctl = build_controller(repository=repo)
    ctl.move_selection(1)
    reads = len(repo.schema_reads)
    ctl.enter_selected()
    assert len(repo.schema_reads) == reads


def test_open_script_with_bad_schema_shows_error(build_controller):
    repo = _repo()
    repo.schemas[PING] = EmptyBlock()
    ctl = build_controller(repository=repo)
    ctl.load_schema(PING)
    assert ctl.screen is Screen.ERROR
    assert ctl.error_message == "Schema block is empty"


def test_zero_field_script_runs_immediately(build_controller):
    runner = FakeRunner()
    ctl = build_controller(repository=_repo(), runner=runner)
    ctl.move_selection(2)
    ctl.enter_selected()
    assert ctl.screen is Screen.RUNNING
    assert ctl.take_pending_run() == (PING, [])
    assert ctl.take_pending_run() is None


def test_required_blank_field_blocks_submission(build_controller):
    runner = FakeRunner()
    ctl = build_controller(repository=_repo(), runner=runner)
    ctl.load_schema(DEPLOY)
    ctl.move_field_selection(1)
    for ch in "3":
        ctl.append_field_char(ch)
    ctl.submit_form()
    fi = ctl.field_input
    assert ctl.screen is Screen.FIELD_INPUT
    assert fi.field_index == 0
    assert isinstance(fi.failure, ValueRequired)
    assert fi.error == "target: Value required"
    assert ctl.pending_run is None
    assert runner.calls == []


def test_invalid_later_field_moves_focus(build_controller):
    ctl = build_controller(repository=_repo())
    ctl.load_schema(DEPLOY)
    for ch in "prod":
        ctl.append_field_char(ch)
    ctl.move_field_selection(1)
    for ch in "lots":
        ctl.append_field_char(ch)
    ctl.move_field_selection(-1)
    ctl.submit_form()
    assert ctl.field_input.field_index == 1
    assert ctl.field_input.error.startswith("count: ")
    ctl.pop_field_char()
    assert ctl.field_input.error is None


def test_field_navigation_wraps(build_controller):
    ctl = build_controller(repository=_repo())
    ctl.load_schema(DEPLOY)
    ctl.move_field_selection(-1)
    assert ctl.field_input.field_index == 1
    ctl.move_field_selection(1)
    assert ctl.field_input.field_index == 0


def test_full_run_records_history(build_controller, tmp_path):
    runner = FakeRunner(ScriptRunOutput(stdout="deployed\n", stderr="", exit_code=0, success=True))
    ctl = build_controller(repository=_repo(), runner=runner, history=[_entry(1)])
    ctl.load_schema(DEPLOY)
    for ch in "prod":
        ctl.append_field_char(ch)
    ctl.move_field_selection(1)
    ctl.append_field_char("2")
    ctl.submit_form()
    assert ctl.screen is Screen.RUNNING

    script_path, args = ctl.take_pending_run()
    assert args == ["--target", "prod", "--count", "2"]
    entry = ctl.execute_run(script_path, args)

    assert runner.calls == [(DEPLOY, ["--target", "prod", "--count", "2"])]
    assert ctl.screen is Screen.RUN_RESULT
    assert entry.script == "deploy.sh"
    assert ctl.history.entries[0] is entry
    assert ctl.history.selection == 0
    assert ctl.field_input.fields == []
    assert ctl.run_output_scroll == 0
    saved = HistoryStore(tmp_path / "history").load_all()
    assert [e.stdout for e in saved] == ["deployed\n"]


def test_execution_error_still_recorded(build_controller, tmp_path):
    runner = FakeRunner(error=ExecutionError("Failed to launch"))
    ctl = build_controller(repository=_repo(), runner=runner)
    entry = ctl.execute_run(PING, [])
    assert entry.error == "Failed to launch"
    assert ExecutionStatus.from_history(entry).kind is ExecutionKind.ERROR
    assert ctl.screen is Screen.RUN_RESULT
    assert len(HistoryStore(tmp_path / "history").load_all()) == 1


def test_history_write_failure_keeps_result(build_controller, tmp_path):
    blocker = tmp_path / "history"
    blocker.write_text("not a directory", encoding="utf-8")
    ctl = build_controller(repository=_repo())
    ctl.execute_run(PING, [])
    assert ctl.screen is Screen.RUN_RESULT
    assert len(ctl.history.entries) == 1


def test_execution_status_from_history():
    assert ExecutionStatus.from_history(_entry(1)).kind is ExecutionKind.SUCCESS
    failed = ExecutionStatus.from_history(_entry(1, success=False, exit_code=4))
    assert failed.kind is ExecutionKind.FAILED and failed.exit_code == 4
    assert failed.label() == "failed (4)"
    assert ExecutionStatus.from_history(_entry(1, success=False, error="x")).label() == "error"


def test_history_selection_and_scroll(build_controller):
    ctl = build_controller(repository=_repo(), history=[_entry(3), _entry(2), _entry(1)])
    ctl.enter_history()
    assert ctl.screen is Screen.HISTORY
    ctl.scroll_run_output(5)
    ctl.move_history_selection(10)
    assert ctl.history.selection == 2
    assert ctl.run_output_scroll == 0
    assert ctl.current_history_entry().timestamp == 1
    ctl.toggle_history_focus()
    assert ctl.history.focus is HistoryFocus.OUTPUT
    ctl.scroll_run_output(-3)
    assert ctl.run_output_scroll == 0
    ctl.add_history_entry(_entry(9))
    assert ctl.history.selection == 0
    assert ctl.current_history_entry().timestamp == 9


def test_search_flow(build_controller):
    results = [
        SearchResult(script_path=DEPLOY.relative_to(ROOT), name="Deploy"),
        SearchResult(script_path=PING.relative_to(ROOT), name="Ping"),
    ]
    search = FakeSearch(results)
    ctl = build_controller(repository=_repo(), search=search)
    ctl.enter_search()
    assert ctl.screen is Screen.SEARCH
    assert len(ctl.search.results) == 2
    ctl.move_search_selection(1)
    assert ctl.search.selection == 1
    ctl.append_search_char("p")
    assert ctl.search.selection == 0
    assert [r.name for r in ctl.search.results] == ["Deploy", "Ping"]
    ctl.append_search_char("i")
    assert [r.name for r in ctl.search.results] == ["Ping"]
    assert ctl.search.details.script_path == PING.relative_to(ROOT)
    ctl.open_selected_search()
    assert ctl.screen is Screen.RUNNING
    assert ctl.pending_run == (PING, [])


def test_search_status_refresh_requeries(build_controller):
    search = FakeSearch(status=SearchStatus(IndexState.INDEXING, 0))
    ctl = build_controller(repository=_repo(), search=search)
    ctl.enter_search()
    calls = len(search.queries)
    ctl.tick()
    assert len(search.queries) == calls
    search.current = SearchStatus(IndexState.READY, 2)
    ctl.tick()
    assert ctl.search.status.state is IndexState.READY
    assert len(search.queries) == calls + 1


def test_indexing_progress_keeps_search_cursor(build_controller):
    results = [SearchResult(script_path=ROOT / f"s{i}.sh", name=f"s{i}") for i in range(3)]
    search = FakeSearch(results=results, status=SearchStatus(IndexState.INDEXING, 3))
    ctl = build_controller(repository=_repo(), search=search)
    ctl.enter_search()
    ctl.move_search_selection(2)
    search.current = SearchStatus(IndexState.INDEXING, 4)
    ctl.tick()
    assert ctl.search.status.count == 4
    assert ctl.search.selection == 2

    search.results = results[:1]
    search.current = SearchStatus(IndexState.READY, 1)
    ctl.tick()
    assert ctl.search.selection == 0

    ctl.append_search_char("s")
    assert ctl.search.selection == 0


def test_details_success_clears_previous_error(build_controller):
    results = [SearchResult(script_path=ROOT / "bad.sh", name="bad"), SearchResult(script_path=ROOT / "ok.sh", name="ok")]

    class FlakySearch(FakeSearch):
        def load_details(self, script_path):
            if script_path.name == "bad.sh":
                raise EmptyBlock()
            return super().load_details(script_path)

    ctl = build_controller(repository=_repo(), search=FlakySearch(results=results))
    ctl.enter_search()
    assert ctl.search.error
    ctl.move_search_selection(1)
    assert ctl.search.error is None
    assert ctl.search.details.script_path == ROOT / "ok.sh"


def test_environments_return_to_invoker(build_controller):
    envs = FakeEnvironments(files={"dev": "TARGET=dev\n", "prod": "TARGET=prod\nAPI_KEY=s\n"})
    ctl = build_controller(repository=_repo(), environments=envs)
    ctl.load_schema(DEPLOY)
    ctl.enter_envs()
    assert ctl.screen is Screen.ENVIRONMENTS
    assert [e.name for e in ctl.environment.entries] == ["dev", "prod"]
    ctl.move_env_selection(1)
    assert ctl.environment.preview == [("TARGET", "prod"), ("API_KEY", "***")]
    ctl.activate_selected_env()
    assert envs.active == "prod"
    assert ctl.environment.config.defaults == {"target": "prod", "api_key": "s"}
    assert ctl.environment.selection == 1
    ctl.exit_envs()
    assert ctl.screen is Screen.FIELD_INPUT
    ctl.back_to_script_select()
    ctl.enter_envs()
    ctl.deactivate_env()
    assert envs.active is None
    ctl.exit_envs()
    assert ctl.screen is Screen.SCRIPT_SELECT


def test_environment_errors_are_inline(build_controller):
    envs = FakeEnvironments(files={"dev": "X=1\n"}, active="missing")
    ctl = build_controller(repository=_repo(), environments=envs)
    assert ctl.environment.config is None
    assert "missing" in ctl.environment.error
    ctl.enter_envs()
    assert ctl.screen is Screen.ENVIRONMENTS


def test_env_preview_scroll_saturates(build_controller):
    ctl = build_controller(repository=_repo(), environments=FakeEnvironments(files={"a": "X=1\n"}))
    ctl.scroll_env_preview(-4)
    assert ctl.environment.preview_scroll == 0
    ctl.scroll_env_preview(10)
    assert ctl.environment.preview_scroll == 10
    ctl.move_env_selection(1)
    assert ctl.environment.preview_scroll == 0


def _wait_for_widget(ctl, timeout=2.0):
    deadline = time.monotonic() + timeout
    while ctl.navigation.widget_loading and time.monotonic() < deadline:
        ctl.tick()
        time.sleep(0.01)


def test_widget_loaded_in_background(build_controller):
    ctl = build_controller(repository=_repo(), widget_fn=lambda d: WidgetData(title=d.name, lines=["hello"]))
    _wait_for_widget(ctl)
    assert not ctl.navigation.widget_loading
    assert ctl.navigation.widget.lines == ["hello"]


def test_widget_error_is_shown_not_raised(build_controller):
    def broken(d):
        raise WidgetError("index.yaml: bad")

    ctl = build_controller(repository=_repo(), widget_fn=broken)
    _wait_for_widget(ctl)
    assert ctl.navigation.widget is None
    assert ctl.navigation.widget_error == "index.yaml: bad"


def test_widget_result_for_new_directory_wins(build_controller):
    ctl = build_controller(repository=_repo(), widget_fn=lambda d: WidgetData(title=str(d)))
    ctl.enter_selected()
    _wait_for_widget(ctl)
    assert ctl.navigation.widget.title == str(OPS)


def test_submit_without_script_quits(build_controller):
    ctl = build_controller(repository=_repo())
    ctl.submit_form()
    assert ctl.should_quit
