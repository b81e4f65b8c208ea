"""
tunectl 命令行工具

使用示例:
    # 首次运行：登录、创建隧道、创建 DNS 记录并启动
    tunectl up --port 8080 --tunnel my-tunnel --domain app.example.com

    # TCP 转发 + SOCKS5 中继
    tunectl up --port 22 --protocol all --tunnel my-tunnel \\
        --domain ssh.example.com --proxy-domain proxy.example.com

    # 不带参数：复用上一次生成的配置
    tunectl up
"""

import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import TunnelCtlSettings
from .exceptions import AbortedError, TunnelCtlError
from .ingress import Protocol
from .orchestrator import RunOptions, TunnelOrchestrator
from .provisioner import TunnelProvisioner

console = Console()
logger = logging.getLogger("tunectl")


def setup_logging(verbose: bool = False) -> None:
    """配置日志"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


def fail(error: TunnelCtlError) -> None:
    """输出一行错误（失败的步骤 + 原因）并退出"""
    step = error.step or "运行"
    logger.error(f"{step}失败: {error}")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def main():
    """tunectl - Cloudflare 隧道开通与运行工具"""
    pass


@main.command()
@click.option("--port", "-p", type=click.IntRange(0, 65535), default=0, help="要转发的本地端口（如 22、5173）")
@click.option(
    "--protocol",
    "--ports",
    "protocol",
    type=click.Choice([p.value for p in Protocol]),
    default=Protocol.HTTP.value,
    show_default=True,
    help="转发协议：http、tcp，或 all（TCP + SOCKS5 中继）",
)
@click.option("--tunnel", "-t", "tunnel_name", default="", help="隧道名称（仅创建时使用）")
@click.option("--domain", "-d", default="", help="公网主机名（如 app.example.com）")
@click.option("--proxy-domain", default="", help="SOCKS5 中继的主机名（protocol=all 时必填）")
@click.option(
    "--credentials",
    "credentials_path",
    default="./credentials.json",
    show_default=True,
    help="隧道凭证文件路径",
)
@click.option(
    "--apiKeys",
    "--api-keys",
    "api_keys_path",
    default="./api-keys.json",
    show_default=True,
    help="API 密钥文件路径",
)
@click.option(
    "--socks5-port",
    type=click.IntRange(1, 65535),
    default=1080,
    show_default=True,
    help="本地 SOCKS5 端口（仅 protocol=all）",
)
@click.option("--logout/--no-logout", default=True, show_default=True, help="退出时注销 Cloudflare 登录")
@click.option("--verbose", "-v", is_flag=True, help="详细日志")
def up(
    port: int,
    protocol: str,
    tunnel_name: str,
    domain: str,
    proxy_domain: str,
    credentials_path: str,
    api_keys_path: str,
    socks5_port: int,
    logout: bool,
    verbose: bool,
):
    """开通并运行隧道，Ctrl+C 停止"""
    setup_logging(verbose)

    options = RunOptions(
        port=port,
        protocol=protocol,
        tunnel_name=tunnel_name,
        domain=domain,
        proxy_domain=proxy_domain,
        credentials_path=credentials_path,
        api_keys_path=api_keys_path,
        socks5_port=socks5_port,
        logout=logout,
    )

    if options.is_full:
        console.print(f"[bold blue]tunectl v{__version__}[/bold blue]")
        console.print(f"  域名: {domain}")
        console.print(f"  本地端口: {port} ({protocol})")
        if proxy_domain:
            console.print(f"  SOCKS5: {proxy_domain} -> 127.0.0.1:{socks5_port}")
        console.print()
    else:
        console.print("[dim]未指定 --port/--tunnel/--domain，复用上一次的配置[/dim]")

    orchestrator = TunnelOrchestrator(TunnelCtlSettings())
    try:
        orchestrator.run(options)
    except TunnelCtlError as e:
        fail(e)
    except KeyboardInterrupt:
        # 步骤之间按下 Ctrl+C，没有步骤名可以标注
        fail(AbortedError("已被用户中断"))

    console.print("[dim]已停止[/dim]")


@main.command("logout")
@click.option("--verbose", "-v", is_flag=True, help="详细日志")
def logout_command(verbose: bool):
    """注销 Cloudflare 登录"""
    setup_logging(verbose)

    if TunnelProvisioner(TunnelCtlSettings()).logout():
        console.print("[green]✓[/green] 已注销")
    else:
        console.print("[red]✗[/red] 注销失败")
        sys.exit(1)


if __name__ == "__main__":
    main()
