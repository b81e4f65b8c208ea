"""
cloudflared ingress 配置

根据命令行参数计算路由，并写出 `<tunnel_id>-config.yml`。
规则按顺序匹配（先匹配先生效），最后追加一条兜底规则。
"""

import logging
import os
from enum import Enum

import yaml

from .exceptions import ConfigError
from .models import IngressConfig, Route

logger = logging.getLogger(__name__)

HTTP_FALLBACK = "http_status:404"
TCP_FALLBACK = "tcp://localhost:0"


class Protocol(str, Enum):
    """转发模式"""

    HTTP = "http"
    TCP = "tcp"
    ALL = "all"  # TCP 端口 + SOCKS5 中继


def build_routes(
    protocol: str,
    port: int,
    domain: str,
    proxy_domain: str | None = None,
    socks5_port: int = 1080,
) -> list[Route]:
    """
    根据转发模式生成路由

    Raises:
        ConfigError: 未知模式，或 all 模式缺少 proxy_domain / proxy_domain 与 domain 相同
    """
    try:
        mode = Protocol(protocol)
    except ValueError:
        raise ConfigError(f"不支持的协议: {protocol}") from None

    if mode is Protocol.HTTP:
        return [Route(hostname=domain, service=f"http://localhost:{port}")]
    if mode is Protocol.TCP:
        return [Route(hostname=domain, service=f"tcp://localhost:{port}")]

    if not proxy_domain:
        raise ConfigError("protocol=all 时必须指定 --proxy-domain")
    if proxy_domain.lower() == domain.lower():
        # 同一主机名只会匹配第一条规则
        raise ConfigError("--proxy-domain 不能与 --domain 相同")
    return [
        Route(hostname=domain, service=f"tcp://localhost:{port}"),
        Route(hostname=proxy_domain, service=f"tcp://localhost:{socks5_port}"),
    ]


def select_fallback(routes: list[Route]) -> str:
    """
    选择兜底规则

    只看第一条路由：http/https 返回 404，其他协议直接丢弃。
    """
    if not routes:
        raise ConfigError("至少需要一条路由")

    first = routes[0]
    is_http = first.scheme in ("http", "https")
    if any((route.scheme in ("http", "https")) != is_http for route in routes[1:]):
        logger.warning("路由同时包含 HTTP 和非 HTTP 服务，兜底规则按第一条路由选择")
    return HTTP_FALLBACK if is_http else TCP_FALLBACK


def config_path_for(tunnel_id: str, directory: str = ".") -> str:
    return os.path.join(directory, f"{tunnel_id}-config.yml")


def build_config(tunnel_id: str, credentials_path: str, routes: list[Route]) -> IngressConfig:
    return IngressConfig(
        tunnel=tunnel_id,
        credentials_file=str(credentials_path),
        routes=routes,
        fallback=select_fallback(routes),
    )


def write_config(
    tunnel_id: str,
    credentials_path: str,
    routes: list[Route],
    directory: str = ".",
) -> str:
    """
    写出 ingress 配置文件（每次运行都会覆盖）

    Returns:
        配置文件路径 `<directory>/<tunnel_id>-config.yml`
    """
    config = build_config(tunnel_id, credentials_path, routes)
    config_path = config_path_for(tunnel_id, directory)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config.to_document(), f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigError(f"无法写入配置文件 {config_path}: {e}") from e

    logger.info(f"配置文件已写入: {config_path}")
    return config_path
