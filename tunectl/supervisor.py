"""
cloudflared 进程管理

两个状态：STOPPED -> RUNNING -> STOPPED（终态）。
守护进程和 SOCKS5 中继共享同一个取消作用域（threading.Event）：
收到 SIGINT/SIGTERM 或调用 cancel() 后，stop() 依次停止中继、
终止守护进程，超时后强制结束。
"""

import logging
import signal
import subprocess
import threading
from enum import Enum
from typing import Callable

from .config import TunnelCtlSettings
from .exceptions import SubprocessError
from .relay import RelayThread, Socks5Relay

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SupervisorState(str, Enum):
    """守护进程状态"""

    STOPPED = "stopped"
    RUNNING = "running"


class ProcessSupervisor:
    """
    守护进程监管器

    使用示例:
        with ProcessSupervisor(settings) as supervisor:
            supervisor.install_signal_handlers()
            supervisor.start(config_path)
            supervisor.await_signal()
    """

    def __init__(
        self,
        settings: TunnelCtlSettings | None = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ):
        self.settings = settings or TunnelCtlSettings()
        self._popen = popen
        self._cancelled = threading.Event()
        self._signum: int | None = None
        self._previous_handlers: dict[int, object] = {}

        self.state = SupervisorState.STOPPED
        self.process: subprocess.Popen | None = None
        self.relay: RelayThread | None = None
        self.returncode: int | None = None

    def __enter__(self) -> "ProcessSupervisor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()
        self.restore_signal_handlers()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    # ============== 启动 ==============

    def start(self, config_path: str) -> subprocess.Popen:
        """
        启动 cloudflared tunnel run

        Raises:
            SubprocessError: 进程无法启动，或监管器已经启动过
        """
        if self.state is not SupervisorState.STOPPED or self.process is not None:
            raise SubprocessError("守护进程已启动，不能重复启动")

        args = [self.settings.daemon_binary, "--config", str(config_path), "tunnel", "run"]
        try:
            # 独立会话，终端的 Ctrl+C 只发给本进程，由 stop() 统一终止子进程
            self.process = self._popen(args, stdin=subprocess.DEVNULL, start_new_session=True)
        except OSError as e:
            raise SubprocessError(f"无法启动 cloudflared: {e}") from e

        self.state = SupervisorState.RUNNING
        logger.info(f"cloudflared 已启动 (PID: {self.process.pid})")
        return self.process

    def start_relay(self, port: int) -> RelayThread:
        """启动 SOCKS5 中继，由 stop() 一并停止"""
        if self.relay is not None:
            return self.relay
        relay = RelayThread(Socks5Relay(host=self.settings.relay_host, port=port))
        relay.start()
        self.relay = relay
        return relay

    # ============== 信号 ==============

    def install_signal_handlers(self) -> None:
        """SIGINT/SIGTERM 触发取消（只能在主线程调用）"""
        for signum in HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._on_signal)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def _on_signal(self, signum: int, frame) -> None:
        logger.info(f"收到信号 {signal.Signals(signum).name}，准备停止")
        self.cancel(signum)

    def cancel(self, signum: int | None = None) -> None:
        """取消作用域，唤醒 await_signal()"""
        if self._signum is None:
            self._signum = signum
        self._cancelled.set()

    def await_signal(self, timeout: float | None = None) -> int | None:
        """
        阻塞直到收到终止信号或守护进程自行退出

        Args:
            timeout: 最长等待时间（秒），None 表示一直等待

        Returns:
            收到的信号编号；守护进程自行退出或超时时返回 None
        """
        interval = self.settings.poll_interval
        waited = 0.0
        while not self._cancelled.wait(interval):
            if self.process is not None and self.process.poll() is not None:
                # 凭证失效等问题只会在这里暴露，由调用方报错，不重试
                logger.debug(f"cloudflared 已自行退出，退出码 {self.process.returncode}")
                return None
            waited += interval
            if timeout is not None and waited >= timeout:
                return None
        return self._signum

    # ============== 停止 ==============

    def stop(self) -> int | None:
        """
        停止中继和守护进程：先发送终止信号，超时后强制结束

        Returns:
            守护进程退出码（未启动时为 None）
        """
        self._cancelled.set()

        if self.relay is not None:
            self.relay.stop()
            self.relay = None

        if self.process is not None and self.state is SupervisorState.RUNNING:
            self.returncode = self._terminate(self.process)
            self.state = SupervisorState.STOPPED
            logger.info(f"cloudflared 已停止，退出码 {self.returncode}")

        return self.returncode

    def _terminate(self, process: subprocess.Popen) -> int:
        if process.poll() is not None:
            return process.returncode

        process.terminate()
        try:
            return process.wait(timeout=self.settings.stop_timeout)
        except subprocess.TimeoutExpired:
            logger.warning(
                f"cloudflared 未在 {self.settings.stop_timeout} 秒内退出，强制结束"
            )

        process.kill()
        try:
            return process.wait(timeout=self.settings.kill_timeout)
        except subprocess.TimeoutExpired as e:
            raise SubprocessError(f"无法结束 cloudflared (PID: {process.pid})") from e
