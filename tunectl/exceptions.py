"""
tunectl 异常定义

所有错误都是致命的：在检测到的位置抛出，由命令行层统一转换为退出码，不做重试。
"""


class TunnelCtlError(Exception):
    """所有 tunectl 错误的基类"""

    def __init__(self, message: str, step: str | None = None):
        super().__init__(message)
        # 出错的编排步骤，由 orchestrator 填充
        self.step = step


class ConfigError(TunnelCtlError):
    """本地文件缺失、格式错误或缺少必填字段"""


class NotFoundError(ConfigError):
    """凭证文件不存在或无法解析"""


class TransportError(TunnelCtlError):
    """DNS API 网络错误或非 2xx 响应"""


class SubprocessError(TunnelCtlError):
    """cloudflared 子进程启动失败或非零退出"""


class RelayError(TunnelCtlError):
    """本地 SOCKS5 中继启动失败"""


class AbortedError(TunnelCtlError):
    """用户在开通过程中按下 Ctrl+C"""
