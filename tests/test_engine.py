"""ScriptEngine tests: build scripts run end to end."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from build_host.errors import ScriptError
from build_host.host.bridge import ProcessBridge
from build_host.host.engine import ScriptEngine, list_targets


class RecordingConsole:
    def __init__(self) -> None:
        self.lines: list[tuple[str, str]] = []

    def echo(self, text: str) -> None:
        self.lines.append(("out", text))

    def echo_error(self, text: str) -> None:
        self.lines.append(("err", text))

    def print_success(self, text: str) -> None:
        self.lines.append(("success", text))

    def print_error(self, text: str) -> None:
        self.lines.append(("error", text))

    def print_status(self, text: str) -> None:
        self.lines.append(("status", text))


def write_script(directory: Path, name: str, body: str) -> Path:
    path = directory / name
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


@pytest.fixture
def console() -> RecordingConsole:
    return RecordingConsole()


@pytest.fixture
def engine_for(tmp_path: Path, console: RecordingConsole):
    bridges = []

    def factory(body: str, **kwargs) -> ScriptEngine:
        script = write_script(tmp_path, "build.py", body)
        bridge = ProcessBridge(working_dir=tmp_path, console=console)
        bridges.append(bridge)
        return ScriptEngine(script, bridge=bridge, console=console, **kwargs)

    yield factory
    for bridge in bridges:
        bridge.close()


class TestGlobals:
    def test_context_globals(self, engine_for, tmp_path: Path):
        engine = engine_for(
            """
            info = (verbose, target, script_path, script_dir)
            """,
            target="release",
            verbose=False,
        )
        engine.run()
        assert engine.namespace["info"] == (
            False,
            "release",
            str((tmp_path / "build.py").resolve()),
            str(tmp_path.resolve()),
        )

    def test_target_defaults_to_none(self, engine_for):
        engine = engine_for("seen = target\n")
        engine.run()
        assert engine.namespace["seen"] is None

    def test_print_helpers(self, engine_for, console: RecordingConsole):
        engine_for(
            """
            println("plain")
            print_success("ok")
            print_error("bad")
            """
        ).run()
        assert console.lines == [("out", "plain"), ("success", "ok"), ("error", "bad")]

    def test_verbose_announces_script(self, engine_for, console: RecordingConsole):
        engine_for("pass\n", verbose=True).run()
        assert console.lines[0][0] == "status"


@pytest.mark.integration
class TestProcessApi:
    def test_run_and_cancel(self, engine_for):
        engine = engine_for(
            """
            lines = []
            ok = run("echo hello", lines.append)

            seen = []
            def stop_after_two(line):
                seen.append(line)
                if len(seen) == 2:
                    return CANCEL

            cancelled = run("for i in 1 2 3 4 5; do echo $i; sleep 0.05; done", stop_after_two)
            """
        )
        engine.run()
        ns = engine.namespace
        assert ns["ok"] is True
        assert ns["lines"] == ["hello"]
        assert ns["seen"] == ["1", "2"]
        assert ns["cancelled"] is False

    def test_exec_command(self, engine_for):
        engine = engine_for(
            """
            result = exec_command("echo out; echo err 1>&2; exit 3")
            """
        )
        engine.run()
        result = engine.namespace["result"]
        assert result.exit_code == 3
        assert result.stdout == "out\n"
        assert result.stderr == "err\n"

    def test_progress_from_script(self, engine_for):
        engine = engine_for(
            """
            kinds = []
            run_with_progress("echo a; echo b", lambda p: kinds.append(p.kind))
            """
        )
        engine.run()
        assert engine.namespace["kinds"] == ["line", "line", "terminal"]


class TestFilesAndJson:
    def test_file_helpers(self, engine_for, tmp_path: Path):
        out_dir = tmp_path / "out" / "nested"
        engine = engine_for(
            f"""
            create_dir({str(out_dir)!r})
            path = {str(out_dir / "data.json")!r}
            write_file(path, json_stringify({{"name": "app", "version": 2}}))
            data = json_parse(read_file(path))
            exists = (file_exists(path), dir_exists(path), dir_exists({str(out_dir)!r}))
            delete_file(path)
            after_delete = file_exists(path)
            missing = read_file(path)
            """
        )
        engine.run()
        ns = engine.namespace
        assert ns["data"] == {"name": "app", "version": 2}
        assert ns["exists"] == (True, False, True)
        assert ns["after_delete"] is False
        assert ns["missing"] is None


class TestIncludes:
    def test_include_local_shares_namespace(self, engine_for, tmp_path: Path):
        (tmp_path / "lib").mkdir()
        write_script(tmp_path / "lib", "helpers.py", "def double(x):\n    return 2 * x\n")
        engine = engine_for('include_local("lib/helpers.py")\nvalue = double(21)\n')
        engine.run()
        assert engine.namespace["value"] == 42

    def test_include_absolute(self, engine_for, tmp_path: Path):
        helper = write_script(tmp_path, "common.py", "FLAGS = ['-O2']\n")
        engine = engine_for(f"include({str(helper)!r})\n")
        engine.run()
        assert engine.namespace["FLAGS"] == ["-O2"]

    def test_circular_include(self, engine_for, tmp_path: Path):
        write_script(tmp_path, "a.py", 'include_local("b.py")\n')
        write_script(tmp_path, "b.py", 'include_local("a.py")\n')
        engine = engine_for('include_local("a.py")\n')
        with pytest.raises(ScriptError, match="circular include"):
            engine.run()

    def test_missing_include(self, engine_for):
        engine = engine_for('include_local("nope.py")\n')
        with pytest.raises(ScriptError, match="cannot read script"):
            engine.run()


class TestErrors:
    def test_syntax_error(self, engine_for):
        engine = engine_for("def broken(:\n")
        with pytest.raises(ScriptError, match="syntax error at line 1"):
            engine.run()

    def test_runtime_error_is_wrapped(self, engine_for):
        engine = engine_for("raise ValueError('bad config')\n")
        with pytest.raises(ScriptError) as exc_info:
            engine.run()
        assert "ValueError: bad config" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.integration
    def test_spawn_error_is_wrapped(self, engine_for):
        engine = engine_for('run(["definitely-not-a-real-binary-xyz"], print)\n')
        with pytest.raises(ScriptError, match="SpawnError"):
            engine.run()

    def test_keyboard_interrupt_propagates(self, engine_for):
        engine = engine_for("raise KeyboardInterrupt\n")
        with pytest.raises(KeyboardInterrupt):
            engine.run()


class TestListTargets:
    def test_targets(self, tmp_path: Path):
        script = write_script(
            tmp_path,
            "build.py",
            """
            TARGETS = ["debug", "release"]
            raise SystemExit("must not run")
            """,
        )
        assert list_targets(script) == ["debug", "release"]

    def test_no_targets(self, tmp_path: Path):
        assert list_targets(write_script(tmp_path, "build.py", "x = 1\n")) == []

    def test_non_literal_targets(self, tmp_path: Path):
        script = write_script(tmp_path, "build.py", "TARGETS = make_targets()\n")
        with pytest.raises(ScriptError):
            list_targets(script)

    def test_non_string_targets(self, tmp_path: Path):
        script = write_script(tmp_path, "build.py", "TARGETS = [1, 2]\n")
        with pytest.raises(ScriptError):
            list_targets(script)
