"""
隧道开通

调用 cloudflared 的 login / create / logout 子命令。
create 不会在进程内返回身份：cloudflared 把凭证写到 --credentials-file 指定的路径，
这里再把该文件读回来。
"""

import logging
import os
import subprocess
from typing import Callable, Sequence

from .config import TunnelCtlSettings
from .exceptions import ConfigError, NotFoundError, SubprocessError
from .models import TunnelIdentity
from .store import CredentialStore

logger = logging.getLogger(__name__)

CommandRunner = Callable[[Sequence[str]], int]
IdentityReader = Callable[[str], TunnelIdentity]


def run_command(args: Sequence[str]) -> int:
    """运行命令并继承标准输入输出（login 需要交互），返回退出码"""
    try:
        return subprocess.run(list(args)).returncode
    except OSError as e:
        raise SubprocessError(f"无法启动 {args[0]}: {e}") from e


class TunnelProvisioner:
    """隧道开通器"""

    def __init__(
        self,
        settings: TunnelCtlSettings | None = None,
        runner: CommandRunner | None = None,
        reader: IdentityReader | None = None,
        store: CredentialStore | None = None,
    ):
        """
        Args:
            settings: 运行时配置
            runner: 命令执行函数（测试时可替换）
            reader: 创建隧道后读回凭证文件的函数（测试时可替换）
            store: 凭证存储
        """
        self.settings = settings or TunnelCtlSettings()
        self.runner = runner or run_command
        self.store = store or CredentialStore()
        self.reader = reader or self.store.load

    def _command(self, *args: str) -> list[str]:
        return [self.settings.daemon_binary, *args]

    def authenticate(self) -> None:
        """交互式登录 Cloudflare，阻塞直到 cloudflared 退出"""
        logger.info("正在登录 Cloudflare...")
        code = self.runner(self._command("tunnel", "login"))
        if code != 0:
            raise SubprocessError(f"Cloudflare 登录失败，退出码 {code}")
        logger.info("Cloudflare 登录成功")

    def create_tunnel(self, name: str, credentials_path: str | os.PathLike) -> TunnelIdentity:
        """
        创建隧道并读回 cloudflared 写出的凭证文件

        Raises:
            SubprocessError: 创建失败或凭证文件无法解析
        """
        logger.info(f"正在创建隧道 {name}...")
        code = self.runner(
            self._command(
                "tunnel", "--credentials-file", str(credentials_path), "create", name
            )
        )
        if code != 0:
            raise SubprocessError(f"创建隧道 {name} 失败，退出码 {code}")

        try:
            identity = self.reader(str(credentials_path))
        except NotFoundError as e:
            raise SubprocessError(f"创建隧道后无法读取凭证: {e}") from e

        logger.info(f"隧道已创建: {name} ({identity.tunnel_id})")
        return identity

    def resolve_identity(
        self, name: str | None, credentials_path: str | os.PathLike
    ) -> TunnelIdentity:
        """
        获取隧道身份

        凭证文件存在且可解析时直接复用，不做任何远端校验；
        否则登录、创建隧道并重新保存凭证（0600）
        """
        if not self.store.exists(credentials_path):
            logger.info(f"凭证文件 {credentials_path} 不存在，开始开通隧道")
        else:
            try:
                identity = self.store.load(credentials_path)
            except NotFoundError as e:
                logger.warning(f"已有凭证不可用，重新开通隧道: {e}")
            else:
                logger.info(f"复用已有隧道: {identity.tunnel_id}")
                return identity

        if not name:
            raise ConfigError("需要创建隧道，但未指定隧道名称（--tunnel）")

        self.authenticate()
        identity = self.create_tunnel(name, credentials_path)
        self.store.save(credentials_path, identity)
        return identity

    def logout(self) -> bool:
        """注销登录，失败只记录警告"""
        logger.info("正在注销 Cloudflare 登录...")
        try:
            code = self.runner(self._command("tunnel", "logout"))
        except SubprocessError as e:
            logger.warning(f"注销失败: {e}")
            return False
        if code != 0:
            logger.warning(f"注销失败，退出码 {code}")
            return False
        logger.info("已注销")
        return True
