"""
测试配置和 Fixtures
"""

import json
import os
import stat
import sys
from pathlib import Path

import httpx
import pytest

from tunectl.config import TunnelCtlSettings
from tunectl.models import TunnelIdentity


TUNNEL_ID = "abc123"
TUNNEL_SUFFIX = "cfargotunnel.com"

# 模拟 cloudflared：记录调用参数，create 时写出凭证文件，run 时一直运行（或按 run_exit_code 退出）
FAKE_CLOUDFLARED = """#!{python}
import json
import sys
import time

args = sys.argv[1:]
with open({log!r}, "a") as f:
    f.write(" ".join(args) + "\\n")

if "create" in args:
    path = args[args.index("--credentials-file") + 1]
    with open(path, "w") as f:
        json.dump({{"AccountTag": "acct", "TunnelSecret": "c2VjcmV0", "TunnelID": "fake-tunnel"}}, f)
    sys.exit(0)

if "run" in args:
    run_exit_code = {run_exit_code!r}
    while run_exit_code is None:
        time.sleep(0.1)
    sys.exit(run_exit_code)

sys.exit({exit_code})
"""


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch) -> Path:
    """切换到临时目录（配置文件写在当前目录）"""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def settings(workdir: Path) -> TunnelCtlSettings:
    return TunnelCtlSettings(
        api_base_url="https://api.test/client/v4",
        stop_timeout=2.0,
        kill_timeout=2.0,
        poll_interval=0.05,
    )


@pytest.fixture
def identity() -> TunnelIdentity:
    return TunnelIdentity(account_tag="acct", tunnel_secret="c2VjcmV0", tunnel_id=TUNNEL_ID)


@pytest.fixture
def credentials_file(workdir: Path, identity: TunnelIdentity) -> Path:
    """预先写好的凭证文件"""
    path = workdir / "credentials.json"
    path.write_text(json.dumps(identity.model_dump(by_alias=True)))
    return path


@pytest.fixture
def api_keys_file(workdir: Path) -> Path:
    path = workdir / "api-keys.json"
    path.write_text(json.dumps({"ApiToken": "token-xyz", "ZoneId": "zone-1"}))
    return path


def make_fake_cloudflared(
    directory: Path, exit_code: int = 0, run_exit_code: int | None = None
) -> tuple[Path, Path]:
    """生成可执行的假 cloudflared，返回 (脚本路径, 调用日志路径)"""
    script = directory / "cloudflared"
    log = directory / "cloudflared-calls.log"
    script.write_text(
        FAKE_CLOUDFLARED.format(
            python=sys.executable,
            log=str(log),
            exit_code=exit_code,
            run_exit_code=run_exit_code,
        )
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script, log


@pytest.fixture
def fake_cloudflared(tmp_path: Path) -> tuple[Path, Path]:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    return make_fake_cloudflared(bin_dir)


class FakeZoneAPI:
    """
    内存中的 Cloudflare DNS API

    通过 httpx.MockTransport 挂到 ZoneClient 上，记录所有请求
    """

    def __init__(self):
        self.records: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with: int | None = None

    @property
    def creates(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.fail_with is not None:
            return httpx.Response(
                self.fail_with, json={"success": False, "errors": [{"message": "boom"}]}
            )

        if request.method == "GET":
            name = request.url.params.get("name")
            result = [r for r in self.records.values() if r["name"] == name]
            return httpx.Response(200, json={"success": True, "result": result})

        if request.method == "POST":
            record = json.loads(request.content)
            record["id"] = f"rec-{len(self.records) + 1}"
            self.records[record["id"]] = record
            return httpx.Response(200, json={"success": True, "result": record})

        return httpx.Response(405, json={"success": False})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def zone_api() -> FakeZoneAPI:
    return FakeZoneAPI()


class RecordingRunner:
    """记录命令的假 runner，可选择在 create 时模拟写出凭证"""

    def __init__(self, exit_codes: dict[str, int] | None = None, write_credentials: bool = True):
        self.calls: list[list[str]] = []
        self.exit_codes = exit_codes or {}
        self.write_credentials = write_credentials

    def __call__(self, args) -> int:
        args = list(args)
        self.calls.append(args)
        subcommand = next((a for a in ("login", "create", "logout") if a in args), "")
        code = self.exit_codes.get(subcommand, 0)
        if subcommand == "create" and code == 0 and self.write_credentials:
            path = args[args.index("--credentials-file") + 1]
            with open(path, "w") as f:
                json.dump({"AccountTag": "acct", "TunnelSecret": "s", "TunnelID": "new-tunnel"}, f)
        return code

    def subcommands(self) -> list[str]:
        return [next(a for a in ("login", "create", "logout", "run") if a in c) for c in self.calls]


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


def file_mode(path: Path | str) -> int:
    return stat.S_IMODE(os.stat(path).st_mode)
