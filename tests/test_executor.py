"""Tests for the supervised executor, using real /bin/sh child processes."""

import io
import os

import pytest

from kegworks.exceptions import BuildCommandFailed
from kegworks.executor import CC_LOG_ENV, SupervisedExecutor, log_name, pretty_command, scrubbed_environ


class InterruptingStream(io.StringIO):
    def __init__(self, trigger):
        super().__init__()
        self.trigger = trigger

    def write(self, s):
        if self.trigger in s:
            raise KeyboardInterrupt
        return super().write(s)


@pytest.fixture
def executor(tmp_path):
    return SupervisedExecutor("libfoo", logs_dir=str(tmp_path / "logs"), verbose=False, stdout=io.StringIO())


class TestHelpers:
    def test_log_name(self):
        assert log_name(3, "make") == "03.make"
        assert log_name(1, "./configure") == "01.configure"
        assert log_name(12, "/usr/bin/cmake") == "12.cmake"

    def test_pretty_configure_hides_boring_flags(self):
        args = ["--disable-dependency-tracking", "--prefix=/opt/foo", "--disable-debug"]
        assert pretty_command("./configure", args, verbose=False) == "./configure --prefix=/opt/foo"
        assert pretty_command("./configure", args, verbose=True) == "./configure " + " ".join(args)
        assert pretty_command("make", ["--disable-debug"], verbose=False) == "make --disable-debug"

    def test_scrubbed_environ_restores(self, monkeypatch):
        monkeypatch.setenv("CC", "gcc-4.8")
        monkeypatch.delenv("CXX", raising=False)
        with pytest.raises(RuntimeError):
            with scrubbed_environ(["CC", "CXX"]):
                assert "CC" not in os.environ
                raise RuntimeError("boom")
        assert os.environ["CC"] == "gcc-4.8"
        assert "CXX" not in os.environ


class TestRun:
    def test_invocation_counter_names_logs(self, executor, write_script, tmp_path):
        configure = write_script("configure", "echo configured\n")
        cmake = write_script("cmake", "echo cmake\n")
        make = write_script("make", "echo built\n")
        executor.run(configure)
        executor.run(cmake)
        log = executor.run(make)
        assert os.path.basename(log) == "03.make"
        assert sorted(os.listdir(tmp_path / "logs" / "libfoo")) == ["01.configure", "02.cmake", "03.make"]
        with open(log) as f:
            assert f.read() == "built\n"

    def test_output_not_echoed_unless_verbose(self, executor, write_script):
        exe = write_script("quiet", "echo hidden\n")
        executor.run(exe, "arg")
        out = executor.stdout.getvalue()
        assert f"==> {exe} arg" in out
        assert "hidden" not in out

    def test_verbose_echoes_output(self, tmp_path, write_script):
        out = io.StringIO()
        ex = SupervisedExecutor("libfoo", logs_dir=str(tmp_path / "logs"), verbose=True, stdout=out)
        ex.run(write_script("loud", "echo shown\necho err >&2\n"))
        assert "shown\n" in out.getvalue()
        assert "err\n" in out.getvalue()

    def test_child_sees_log_path(self, executor, write_script):
        exe = write_script("envcheck", f'echo "${CC_LOG_ENV}"\n')
        log = executor.run(exe)
        with open(log) as f:
            assert f.read().strip() == log

    def test_xcodebuild_scrubs_compiler_env(self, executor, write_script, monkeypatch):
        monkeypatch.setenv("CC", "gcc-4.8")
        monkeypatch.setenv("CFLAGS", "-O3")
        exe = write_script("xcodebuild", 'echo "CC=${CC:-unset} CFLAGS=${CFLAGS:-unset}"\n')
        log = executor.run(exe, "-configuration", "Release")
        with open(log) as f:
            assert f.read().strip() == "CC=unset CFLAGS=unset"
        assert os.environ["CC"] == "gcc-4.8"
        assert os.environ["CFLAGS"] == "-O3"

    def test_other_commands_keep_compiler_env(self, executor, write_script, monkeypatch):
        monkeypatch.setenv("CC", "gcc-4.8")
        log = executor.run(write_script("make", 'echo "CC=${CC:-unset}"\n'))
        with open(log) as f:
            assert f.read().strip() == "CC=gcc-4.8"

    def test_cwd(self, executor, write_script, tmp_path):
        build = tmp_path / "build"
        build.mkdir()
        log = executor.run(write_script("where", "pwd -P\n"), cwd=str(build))
        with open(log) as f:
            assert f.read().strip() == os.path.realpath(build)


class TestFailure:
    def test_failure_propagates_exit_status_and_full_log(self, executor, write_script):
        body = "".join(f"echo out{i}\necho err{i} >&2\n" for i in range(1, 5)) + "exit 3\n"
        exe = write_script("make", body)
        with pytest.raises(BuildCommandFailed) as exc:
            executor.run(exe, "install")
        err = exc.value
        assert err.exit_status == 3
        assert err.formula == "libfoo"
        assert err.cmd == exe
        assert err.args == ["install"]
        with open(err.log_path) as f:
            content = f.read()
        expected = "".join(f"out{i}\nerr{i}\n" for i in range(1, 5))
        assert content.startswith(expected + "\n")
        assert "KEGWORKS_VERSION:" in content
        # tail of the log on the console
        console = executor.stdout.getvalue()
        assert "err2\nout3\nerr3\nout4\nerr4\n" in console
        assert "out2\n" not in console

    def test_verbose_failure_skips_tail(self, tmp_path, write_script):
        out = io.StringIO()
        ex = SupervisedExecutor("libfoo", logs_dir=str(tmp_path / "logs"), verbose=True, stdout=out)
        with pytest.raises(BuildCommandFailed):
            ex.run(write_script("make", "echo once\nexit 1\n"))
        assert out.getvalue().count("once") == 1

    def test_spawn_failure_is_exit_status_one(self, executor, tmp_path):
        missing = str(tmp_path / "no-such-tool")
        with pytest.raises(BuildCommandFailed) as exc:
            executor.run(missing)
        assert exc.value.exit_status == 1
        with open(exc.value.log_path) as f:
            assert f.readline() == f"Failed to execute: {missing}\n"

    def test_config_writer_receives_log(self, tmp_path, write_script):
        seen = []
        ex = SupervisedExecutor("libfoo", logs_dir=str(tmp_path / "logs"), stdout=io.StringIO(),
                                config_writer=lambda fh: (seen.append(fh.name), fh.write("CONFIG\n")))
        with pytest.raises(BuildCommandFailed) as exc:
            ex.run(write_script("make", "exit 2\n"))
        assert seen == [exc.value.log_path]
        with open(exc.value.log_path) as f:
            assert f.read() == "\nCONFIG\n"

    def test_interrupt_kills_child(self, tmp_path, write_script):
        pidfile = tmp_path / "pid"
        exe = write_script("hang", f'echo $$ > "{pidfile}"\necho boom\nexec sleep 30\n')
        ex = SupervisedExecutor("libfoo", logs_dir=str(tmp_path / "logs"), verbose=True,
                                stdout=InterruptingStream("boom"))
        with pytest.raises(KeyboardInterrupt):
            ex.run(exe)
        pid = int(pidfile.read_text())
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)
