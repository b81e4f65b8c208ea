"""
进程监管测试
"""

import os
import signal
import subprocess
import threading
import time

import pytest

from tunectl.config import TunnelCtlSettings
from tunectl.exceptions import SubprocessError
from tunectl.supervisor import ProcessSupervisor, SupervisorState


class FakeProcess:
    """可控的 Popen 替身"""

    def __init__(self, ignore_terminate: bool = False, exit_on_start: int | None = None):
        self.pid = 4242
        self.returncode = exit_on_start
        self.ignore_terminate = ignore_terminate
        self.signals: list[str] = []

    def poll(self):
        return self.returncode

    def terminate(self):
        self.signals.append("terminate")
        if not self.ignore_terminate:
            self.returncode = -signal.SIGTERM

    def kill(self):
        self.signals.append("kill")
        self.returncode = -signal.SIGKILL

    def wait(self, timeout=None):
        if self.returncode is None:
            raise subprocess.TimeoutExpired("cloudflared", timeout)
        return self.returncode


class FakePopen:
    def __init__(self, process: FakeProcess):
        self.process = process
        self.calls: list[list[str]] = []

    def __call__(self, args, **kwargs):
        self.calls.append(list(args))
        return self.process


class TestLifecycle:
    """测试状态转换"""

    def test_start_command(self, settings):
        popen = FakePopen(FakeProcess())
        supervisor = ProcessSupervisor(settings, popen=popen)

        supervisor.start("./abc123-config.yml")

        assert popen.calls == [
            ["cloudflared", "--config", "./abc123-config.yml", "tunnel", "run"]
        ]
        assert supervisor.state is SupervisorState.RUNNING

    def test_stop_terminates(self, settings):
        process = FakeProcess()
        supervisor = ProcessSupervisor(settings, popen=FakePopen(process))
        supervisor.start("c.yml")

        assert supervisor.stop() == -signal.SIGTERM
        assert process.signals == ["terminate"]
        assert supervisor.state is SupervisorState.STOPPED

    def test_kill_after_timeout(self, settings):
        """守护进程忽略终止信号时强制结束"""
        process = FakeProcess(ignore_terminate=True)
        supervisor = ProcessSupervisor(settings, popen=FakePopen(process))
        supervisor.start("c.yml")

        assert supervisor.stop() == -signal.SIGKILL
        assert process.signals == ["terminate", "kill"]

    def test_stop_is_idempotent(self, settings):
        process = FakeProcess()
        supervisor = ProcessSupervisor(settings, popen=FakePopen(process))
        supervisor.start("c.yml")
        supervisor.stop()
        supervisor.stop()
        assert process.signals == ["terminate"]

    def test_stopped_is_terminal(self, settings):
        supervisor = ProcessSupervisor(settings, popen=FakePopen(FakeProcess()))
        supervisor.start("c.yml")
        supervisor.stop()
        with pytest.raises(SubprocessError):
            supervisor.start("c.yml")

    def test_stop_before_start(self, settings):
        supervisor = ProcessSupervisor(settings, popen=FakePopen(FakeProcess()))
        assert supervisor.stop() is None
        assert supervisor.state is SupervisorState.STOPPED

    def test_spawn_failure(self, settings, tmp_path):
        settings.daemon_binary = str(tmp_path / "no-such-cloudflared")
        supervisor = ProcessSupervisor(settings)
        with pytest.raises(SubprocessError):
            supervisor.start("c.yml")
        assert supervisor.state is SupervisorState.STOPPED

    def test_context_manager_stops(self, settings):
        process = FakeProcess()
        with ProcessSupervisor(settings, popen=FakePopen(process)) as supervisor:
            supervisor.start("c.yml")
        assert process.signals == ["terminate"]


class TestAwaitSignal:
    """测试等待信号"""

    def test_cancel_wakes_waiter(self, settings):
        supervisor = ProcessSupervisor(settings, popen=FakePopen(FakeProcess()))
        supervisor.start("c.yml")

        timer = threading.Timer(0.1, supervisor.cancel, args=(signal.SIGTERM,))
        timer.start()
        assert supervisor.await_signal(timeout=5) == signal.SIGTERM
        assert supervisor.cancelled

    def test_daemon_exit_wakes_waiter(self, settings):
        """守护进程自行退出时返回 None"""
        supervisor = ProcessSupervisor(settings, popen=FakePopen(FakeProcess(exit_on_start=1)))
        supervisor.start("c.yml")
        assert supervisor.await_signal(timeout=5) is None
        assert supervisor.process.returncode == 1
        assert not supervisor.cancelled

    def test_timeout(self, settings):
        supervisor = ProcessSupervisor(settings, popen=FakePopen(FakeProcess()))
        supervisor.start("c.yml")
        assert supervisor.await_signal(timeout=0.2) is None
        assert not supervisor.cancelled


class TestRealProcess:
    """使用假的 cloudflared 子进程"""

    def test_interrupt_stops_daemon(self, workdir, fake_cloudflared):
        """收到 SIGINT 后取消并等待子进程退出"""
        script, log = fake_cloudflared
        settings = TunnelCtlSettings(daemon_binary=str(script), poll_interval=0.05, stop_timeout=5)
        supervisor = ProcessSupervisor(settings)
        supervisor.install_signal_handlers()
        try:
            process = supervisor.start("./abc123-config.yml")
            # 等子进程真正跑起来
            deadline = time.monotonic() + 10
            while not (log.exists() and log.read_text()) and time.monotonic() < deadline:
                time.sleep(0.05)
            assert process.poll() is None

            os.kill(os.getpid(), signal.SIGINT)
            assert supervisor.await_signal(timeout=10) == signal.SIGINT

            returncode = supervisor.stop()
        finally:
            supervisor.stop()
            supervisor.restore_signal_handlers()

        assert returncode == -signal.SIGTERM
        assert process.poll() is not None
        assert supervisor.state is SupervisorState.STOPPED
        assert log.read_text().splitlines() == ["--config ./abc123-config.yml tunnel run"]

    def test_restore_signal_handlers(self, settings):
        previous = signal.getsignal(signal.SIGINT)
        supervisor = ProcessSupervisor(settings)
        supervisor.install_signal_handlers()
        assert signal.getsignal(signal.SIGINT) != previous
        supervisor.restore_signal_handlers()
        assert signal.getsignal(signal.SIGINT) == previous


class TestRelay:
    """中继与守护进程共享取消作用域"""

    def test_relay_stopped_with_supervisor(self, settings):
        supervisor = ProcessSupervisor(settings, popen=FakePopen(FakeProcess()))
        relay = supervisor.start_relay(0)
        supervisor.start("c.yml")
        assert relay.is_alive()

        supervisor.stop()

        assert not relay.is_alive()
        assert supervisor.relay is None
