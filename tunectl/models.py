"""
tunectl 数据模型

- TunnelIdentity: 隧道身份（credentials.json）
- APIKeys: Cloudflare API 令牌与 Zone ID（api-keys.json）
- DNSRecord: DNS 记录
- Route / IngressConfig: cloudflared ingress 规则
"""

from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field


# ============== 本地文件 ==============


class TunnelIdentity(BaseModel):
    """
    隧道身份

    由 `cloudflared tunnel create` 生成，首次创建后不再改变，按机密处理
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    account_tag: str = Field(default="", alias="AccountTag", description="账户标识")
    tunnel_secret: str = Field(default="", alias="TunnelSecret", description="隧道密钥")
    tunnel_id: str = Field(
        ..., alias="TunnelID", pattern=r"^[A-Za-z0-9-]+$", description="隧道 ID（会用于配置文件名）"
    )


class APIKeys(BaseModel):
    """API 密钥文件，由用户提供，只读"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    api_token: str = Field(default="", alias="ApiToken", description="Bearer 令牌")
    zone_id: str = Field(default="", alias="ZoneId", description="Zone ID")


# ============== DNS ==============


class DNSRecord(BaseModel):
    """Cloudflare DNS 记录"""

    id: str | None = Field(default=None, description="记录 ID（创建时为空）")
    type: str = Field(default="CNAME", description="记录类型")
    name: str = Field(..., description="记录名（完整主机名）")
    content: str = Field(..., description="记录值")


# ============== Ingress ==============


class Route(BaseModel):
    """主机名到本地服务的映射"""

    model_config = ConfigDict(frozen=True)

    hostname: str = Field(..., description="公网主机名")
    service: str = Field(..., description="本地服务 URI，如 http://localhost:8080")

    @property
    def scheme(self) -> str:
        return urlsplit(self.service).scheme.lower()


class IngressConfig(BaseModel):
    """cloudflared 配置文件内容"""

    tunnel: str = Field(..., description="隧道 ID")
    credentials_file: str = Field(..., description="凭证文件路径")
    routes: list[Route] = Field(default_factory=list, description="按顺序匹配的规则")
    fallback: str = Field(..., description="兜底规则的 service")

    def to_document(self) -> dict:
        """转换为 cloudflared 期望的 YAML 结构"""
        ingress = [
            {"hostname": route.hostname, "service": route.service}
            for route in self.routes
        ]
        ingress.append({"service": self.fallback})
        return {
            "tunnel": self.tunnel,
            "credentials-file": self.credentials_file,
            "ingress": ingress,
        }
