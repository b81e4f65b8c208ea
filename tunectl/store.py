"""
tunectl 本地文件存储

- CredentialStore: 读写隧道凭证（credentials.json，仅所有者可读写）
- APIKeyStore: 读取 API 密钥（api-keys.json）

只面向单进程单用户使用，不做文件锁
"""

import json
import logging
import os
import stat
import tempfile
from pathlib import Path

from pydantic import ValidationError

from .exceptions import ConfigError, NotFoundError
from .models import APIKeys, TunnelIdentity

logger = logging.getLogger(__name__)

CREDENTIALS_FILE_MODE = stat.S_IRUSR | stat.S_IWUSR


class CredentialStore:
    """隧道凭证存储"""

    @staticmethod
    def exists(path: str | os.PathLike) -> bool:
        return Path(path).is_file()

    @staticmethod
    def load(path: str | os.PathLike) -> TunnelIdentity:
        """
        读取凭证文件

        Raises:
            NotFoundError: 文件不存在、无法读取或格式错误
        """
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise NotFoundError(f"无法读取凭证文件 {path}: {e}") from e

        try:
            return TunnelIdentity.model_validate_json(data)
        except ValidationError as e:
            raise NotFoundError(f"凭证文件 {path} 格式错误: {e}") from e

    @staticmethod
    def save(path: str | os.PathLike, identity: TunnelIdentity) -> None:
        """
        保存凭证文件

        先写入同目录下的临时文件（0600），再替换目标文件
        """
        path = Path(path)
        data = json.dumps(identity.model_dump(by_alias=True), indent=2)

        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
            )
        except OSError as e:
            raise ConfigError(f"无法写入凭证文件 {path}: {e}") from e

        try:
            with os.fdopen(fd, "w") as f:
                f.write(data)
            os.chmod(tmp_path, CREDENTIALS_FILE_MODE)
            os.replace(tmp_path, path)
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise ConfigError(f"无法写入凭证文件 {path}: {e}") from e

        logger.debug(f"凭证已保存: {path}")


class APIKeyStore:
    """API 密钥存储（只读）"""

    @staticmethod
    def load(path: str | os.PathLike) -> APIKeys:
        """
        读取 API 密钥文件

        Raises:
            ConfigError: 文件无法读取/解析，或 ApiToken、ZoneId 为空
        """
        path = Path(path)
        try:
            keys = APIKeys.model_validate_json(path.read_bytes())
        except OSError as e:
            raise ConfigError(f"无法读取 API 密钥文件 {path}: {e}") from e
        except ValidationError as e:
            raise ConfigError(f"API 密钥文件 {path} 格式错误: {e}") from e

        if not keys.api_token or not keys.zone_id:
            raise ConfigError(f"API 密钥文件 {path} 缺少 ApiToken 或 ZoneId")
        return keys
