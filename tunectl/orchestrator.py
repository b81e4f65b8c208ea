"""
编排流程

完整模式（指定了 port / tunnel / domain）:
    读取 API 密钥 -> 获取隧道身份 -> 确保 DNS 记录 -> 计算路由
    -> 写配置文件 -> 启动并监管 cloudflared

恢复模式（缺少上述任一参数）:
    读取已有凭证 -> 复用 `<tunnel_id>-config.yml` -> 启动并监管 cloudflared

每一步都有明确的输入输出，协作对象均可替换，便于测试。
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator

from .config import TunnelCtlSettings
from .dns import ZoneClient
from .exceptions import (
    AbortedError,
    ConfigError,
    NotFoundError,
    SubprocessError,
    TunnelCtlError,
)
from .ingress import Protocol, build_routes, config_path_for, write_config
from .models import APIKeys, Route, TunnelIdentity
from .provisioner import TunnelProvisioner
from .store import APIKeyStore, CredentialStore
from .supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

ZoneClientFactory = Callable[[str], ZoneClient]
SupervisorFactory = Callable[[], ProcessSupervisor]


@dataclass
class RunOptions:
    """命令行参数"""

    port: int = 0
    protocol: str = Protocol.HTTP.value
    tunnel_name: str = ""
    domain: str = ""
    proxy_domain: str = ""
    credentials_path: str = "./credentials.json"
    api_keys_path: str = "./api-keys.json"
    socks5_port: int = 1080
    logout: bool = True

    @property
    def is_full(self) -> bool:
        """参数齐全时走完整开通流程，否则复用上次的配置"""
        return bool(self.port and self.tunnel_name and self.domain)


@dataclass
class PreparedRun:
    """开通完成、等待启动的状态"""

    identity: TunnelIdentity
    config_path: str
    routes: list[Route]
    relay_port: int | None = None


class TunnelOrchestrator:
    """隧道编排器"""

    def __init__(
        self,
        settings: TunnelCtlSettings | None = None,
        credential_store: CredentialStore | None = None,
        api_key_store: APIKeyStore | None = None,
        provisioner: TunnelProvisioner | None = None,
        zone_client_factory: ZoneClientFactory | None = None,
        supervisor_factory: SupervisorFactory | None = None,
    ):
        self.settings = settings or TunnelCtlSettings()
        self.credential_store = credential_store or CredentialStore()
        self.api_key_store = api_key_store or APIKeyStore()
        self.provisioner = provisioner or TunnelProvisioner(
            self.settings, store=self.credential_store
        )
        self.zone_client_factory = zone_client_factory or (
            lambda token: ZoneClient(token, settings=self.settings)
        )
        self.supervisor_factory = supervisor_factory or (
            lambda: ProcessSupervisor(self.settings)
        )

    @contextmanager
    def _step(self, name: str) -> Iterator[None]:
        """为步骤中抛出的错误标注步骤名，Ctrl+C 转换为 AbortedError"""
        logger.debug(f"开始: {name}")
        try:
            yield
        except TunnelCtlError as e:
            if e.step is None:
                e.step = name
            raise
        except KeyboardInterrupt:
            raise AbortedError("已被用户中断", step=name) from None

    # ============== 步骤 ==============

    def validate(self, options: RunOptions) -> None:
        if options.protocol != Protocol.ALL.value:
            return
        if not options.proxy_domain:
            raise ConfigError("protocol=all 时必须指定 --proxy-domain")
        if options.proxy_domain.lower() == options.domain.lower():
            raise ConfigError("--proxy-domain 不能与 --domain 相同")

    def load_api_keys(self, options: RunOptions) -> APIKeys:
        return self.api_key_store.load(options.api_keys_path)

    def resolve_identity(self, options: RunOptions) -> TunnelIdentity:
        return self.provisioner.resolve_identity(
            options.tunnel_name, options.credentials_path
        )

    def reconcile_dns(
        self, keys: APIKeys, identity: TunnelIdentity, hostnames: list[str]
    ) -> list[str]:
        """确保每个主机名都有 CNAME 记录，返回本次新建的主机名"""
        created = []
        with self.zone_client_factory(keys.api_token) as client:
            for hostname in hostnames:
                if client.ensure_record(keys.zone_id, hostname, identity.tunnel_id):
                    created.append(hostname)
        return created

    def compute_routes(self, options: RunOptions) -> list[Route]:
        return build_routes(
            options.protocol,
            options.port,
            options.domain,
            proxy_domain=options.proxy_domain or None,
            socks5_port=options.socks5_port,
        )

    def write_config(
        self, identity: TunnelIdentity, options: RunOptions, routes: list[Route]
    ) -> str:
        return write_config(
            identity.tunnel_id,
            options.credentials_path,
            routes,
            directory=self.settings.config_dir,
        )

    # ============== 流程 ==============

    def prepare(self, options: RunOptions) -> PreparedRun:
        """完整模式：开通并写出配置"""
        with self._step("检查参数"):
            self.validate(options)
        with self._step("读取 API 密钥"):
            keys = self.load_api_keys(options)
        with self._step("获取隧道身份"):
            identity = self.resolve_identity(options)

        hostnames = [options.domain]
        if options.protocol == Protocol.ALL.value:
            hostnames.append(options.proxy_domain)
        with self._step("确保 DNS 记录"):
            self.reconcile_dns(keys, identity, hostnames)

        with self._step("生成路由"):
            routes = self.compute_routes(options)
        with self._step("写入配置文件"):
            config_path = self.write_config(identity, options, routes)

        relay_port = options.socks5_port if options.protocol == Protocol.ALL.value else None
        return PreparedRun(identity, config_path, routes, relay_port)

    def resume(self, options: RunOptions) -> PreparedRun:
        """恢复模式：复用上一次的凭证和配置文件，不调用任何 API"""
        with self._step("读取已有配置"):
            try:
                identity = self.credential_store.load(options.credentials_path)
            except NotFoundError as e:
                raise NotFoundError(f"未找到之前的配置: {e}") from e

            config_path = config_path_for(identity.tunnel_id, self.settings.config_dir)
            if not os.path.isfile(config_path):
                raise ConfigError(f"配置文件 {config_path} 不存在")

        logger.info(f"复用配置文件: {config_path}")
        return PreparedRun(identity, config_path, routes=[])

    def supervise(self, prepared: PreparedRun, logout: bool = True) -> int | None:
        """
        启动中继和守护进程，阻塞直到收到终止信号，然后停止

        Returns:
            守护进程退出码

        Raises:
            SubprocessError: 守护进程没有收到信号就自行退出（在停止和注销之后抛出）
        """
        try:
            with self.supervisor_factory() as supervisor:
                supervisor.install_signal_handlers()
                if prepared.relay_port is not None:
                    with self._step("启动 SOCKS5 中继"):
                        supervisor.start_relay(prepared.relay_port)
                with self._step("启动 cloudflared"):
                    supervisor.start(prepared.config_path)

                signum = supervisor.await_signal()
                with self._step("停止 cloudflared"):
                    returncode = supervisor.stop()
        finally:
            if logout:
                self.provisioner.logout()

        if signum is None:
            raise SubprocessError(
                f"cloudflared 意外退出，退出码 {returncode}", step="运行 cloudflared"
            )

        logger.info("Cloudflare 隧道已停止")
        return returncode

    def run(self, options: RunOptions) -> int | None:
        if options.is_full:
            prepared = self.prepare(options)
        else:
            prepared = self.resume(options)
        return self.supervise(prepared, logout=options.logout)
