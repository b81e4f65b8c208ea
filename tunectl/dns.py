"""
Cloudflare DNS 客户端

只做两件事：按主机名查询记录是否存在，不存在时创建指向隧道的 CNAME。
已存在的记录永远不会被修改或删除。
"""

import logging

import httpx

from .config import TunnelCtlSettings
from .exceptions import TransportError
from .models import DNSRecord

logger = logging.getLogger(__name__)


class ZoneClient:
    """
    Zone DNS 客户端

    使用示例:
        with ZoneClient(api_token="xxx") as client:
            client.ensure_record(zone_id, "app.example.com", tunnel_id)
    """

    def __init__(
        self,
        api_token: str,
        settings: TunnelCtlSettings | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Args:
            api_token: Cloudflare API Bearer 令牌
            settings: 运行时配置
            transport: 自定义传输层（测试时传入 httpx.MockTransport）
        """
        self.settings = settings or TunnelCtlSettings()
        self._client = httpx.Client(
            base_url=self.settings.api_base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            },
            timeout=self.settings.request_timeout,
            transport=transport,
        )

    def __enter__(self) -> "ZoneClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, url: str, **kwargs) -> dict:
        """发送请求，任何失败都转换为 TransportError"""
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"API 请求失败: {method} {url}: {e}") from e

        if not response.is_success:
            raise TransportError(
                f"API 错误: {method} {url} -> {response.status_code}: {response.text}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(f"API 响应无法解析: {method} {url}: {e}") from e

        if not isinstance(payload, dict) or payload.get("success") is False:
            raise TransportError(f"API 返回失败: {method} {url}: {response.text}")
        return payload

    def list_records(self, zone_id: str, hostname: str) -> list[DNSRecord]:
        """按主机名精确查询 DNS 记录"""
        payload = self._request(
            "GET", f"/zones/{zone_id}/dns_records", params={"name": hostname}
        )
        return [DNSRecord.model_validate(item) for item in payload.get("result") or []]

    def record_exists(self, zone_id: str, hostname: str) -> bool:
        return len(self.list_records(zone_id, hostname)) > 0

    def create_record(self, zone_id: str, record: DNSRecord) -> DNSRecord:
        payload = self._request(
            "POST",
            f"/zones/{zone_id}/dns_records",
            json=record.model_dump(exclude_none=True),
        )
        result = payload.get("result")
        if isinstance(result, dict):
            return DNSRecord.model_validate(result)
        return record

    def tunnel_target(self, tunnel_id: str) -> str:
        return f"{tunnel_id}.{self.settings.tunnel_suffix}"

    def ensure_record(self, zone_id: str, hostname: str, tunnel_id: str) -> bool:
        """
        确保主机名有指向隧道的 CNAME 记录

        Returns:
            本次是否创建了记录
        """
        target = self.tunnel_target(tunnel_id)
        existing = self.list_records(zone_id, hostname)

        if existing:
            for record in existing:
                if record.type != "CNAME" or record.content != target:
                    # 不自动修正，交给运维排查
                    logger.warning(
                        f"{hostname} 已有记录 {record.type} -> {record.content}，"
                        f"未指向 {target}，请手动检查"
                    )
            logger.info(f"DNS 记录已存在，跳过: {hostname}")
            return False

        self.create_record(
            zone_id, DNSRecord(type="CNAME", name=hostname, content=target)
        )
        logger.info(f"已创建 DNS 记录: {hostname} -> {target}")
        return True
