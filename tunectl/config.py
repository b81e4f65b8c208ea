"""
tunectl 配置
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class TunnelCtlSettings(BaseSettings):
    """运行时配置（可通过 TUNECTL_ 前缀的环境变量覆盖）"""

    # 守护进程
    daemon_binary: str = Field(
        default="cloudflared", description="cloudflared 可执行文件（名称或路径）"
    )

    # Cloudflare API
    api_base_url: str = Field(
        default="https://api.cloudflare.com/client/v4",
        description="Cloudflare API 地址",
    )
    tunnel_suffix: str = Field(
        default="cfargotunnel.com", description="CNAME 记录指向的隧道域名后缀"
    )
    request_timeout: float = Field(default=30.0, description="API 请求超时（秒）")

    # 进程管理
    stop_timeout: float = Field(
        default=10.0, description="发送终止信号后等待守护进程退出的时间（秒）"
    )
    kill_timeout: float = Field(default=5.0, description="强制结束后的等待时间（秒）")
    poll_interval: float = Field(default=0.5, description="等待信号时的轮询间隔（秒）")

    # 文件
    config_dir: str = Field(default=".", description="ingress 配置文件目录")

    # SOCKS5 中继
    relay_host: str = Field(default="127.0.0.1", description="SOCKS5 中继监听地址")

    model_config = {
        "env_prefix": "TUNECTL_",
        "env_file": ".env",
        "extra": "ignore",
    }
