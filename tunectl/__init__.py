"""
tunectl - Cloudflare 隧道开通与运行工具

- 创建或复用隧道身份（credentials.json）
- 确保主机名的 CNAME 记录指向隧道
- 生成 cloudflared ingress 配置
- 启动并监管 cloudflared，可选本地 SOCKS5 中继
"""

__version__ = "0.1.0"

from .config import TunnelCtlSettings
from .dns import ZoneClient
from .exceptions import (
    AbortedError,
    ConfigError,
    NotFoundError,
    RelayError,
    SubprocessError,
    TransportError,
    TunnelCtlError,
)
from .ingress import Protocol, build_routes, write_config
from .models import APIKeys, DNSRecord, IngressConfig, Route, TunnelIdentity
from .orchestrator import RunOptions, TunnelOrchestrator
from .provisioner import TunnelProvisioner
from .relay import RelayThread, Socks5Relay
from .store import APIKeyStore, CredentialStore
from .supervisor import ProcessSupervisor, SupervisorState

__all__ = [
    # 版本
    "__version__",
    # 配置
    "TunnelCtlSettings",
    # 模型
    "TunnelIdentity",
    "APIKeys",
    "DNSRecord",
    "Route",
    "IngressConfig",
    # 异常
    "TunnelCtlError",
    "AbortedError",
    "ConfigError",
    "NotFoundError",
    "TransportError",
    "SubprocessError",
    "RelayError",
    # 组件
    "CredentialStore",
    "APIKeyStore",
    "ZoneClient",
    "TunnelProvisioner",
    "Protocol",
    "build_routes",
    "write_config",
    "Socks5Relay",
    "RelayThread",
    "ProcessSupervisor",
    "SupervisorState",
    # 编排
    "RunOptions",
    "TunnelOrchestrator",
]
