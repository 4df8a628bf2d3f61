"""
InfluxDB 指标存储

写入使用 influxdb-client 的异步写接口，支持 v1（用户名/密码）和 v2（Token）两种认证方式。
v1 通过 1.8+ 提供的 v2 兼容接口写入：Token 为 "用户名:密码"，组织为 "-"，存储桶即数据库名。
连接检查直接查询数据库 / 存储桶列表。
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp
from aiohttp import BasicAuth, ClientError, ClientTimeout
from influxdb_client import Point
from influxdb_client.client.influxdb_client_async import InfluxDBClientAsync
from influxdb_client.rest import ApiException

from ..config.settings import InfluxConfig
from ..core.errors import SinkError
from ..core.models import MetricRecord
from .base import MetricsSink


logger = logging.getLogger(__name__)


def _field_value(value: Any) -> Any:
    """数值统一写为浮点字段，字符串字段去掉换行"""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    return " ".join(str(value).splitlines())


def to_point(record: MetricRecord) -> Optional[Point]:
    """
    将一条记录转换为 InfluxDB 数据点

    Returns:
        数据点；没有字段时返回 None
    """
    fields = {k: v for k, v in record.fields.items() if v is not None}
    if not fields:
        return None

    point = Point(record.measurement)
    for key, value in sorted(record.tags.items()):
        if value is None or value == "":
            continue
        point.tag(key, str(value))
    for key, value in fields.items():
        point.field(key, _field_value(value))
    return point


class InfluxDBSink(MetricsSink):
    """InfluxDB 指标存储"""

    def __init__(self, config: InfluxConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None
        self._client: Optional[InfluxDBClientAsync] = None

    def __repr__(self) -> str:
        return f"InfluxDBSink({self.config!r})"

    @property
    def name(self) -> str:
        return "influxdb"

    @property
    def is_v2(self) -> bool:
        return self.config.auth_method == "token"

    def _write_target(self) -> Tuple[str, str, str]:
        """写入使用的 (token, org, bucket)"""
        if self.is_v2:
            return self.config.token, self.config.organization, self.config.database
        return f"{self.config.username}:{self.config.password}", "-", self.config.database

    def _get_client(self) -> InfluxDBClientAsync:
        """获取或创建写入客户端（必须在事件循环中调用）"""
        if self._client is None:
            token, org, _ = self._write_target()
            self._client = InfluxDBClientAsync(
                url=self.config.base_url,
                token=token,
                org=org,
                timeout=self.config.timeout * 1000,
                verify_ssl=not self.config.ignore_ssl
            )
        return self._client

    async def _get_session(self) -> aiohttp.ClientSession:
        """获取或创建检查连接用的 HTTP 会话"""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(ssl=False if self.config.ignore_ssl else True)
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=ClientTimeout(total=self.config.timeout)
            )
        return self._session

    def _auth(self) -> Tuple[Optional[BasicAuth], Dict[str, str]]:
        if self.is_v2:
            return None, {"Authorization": f"Token {self.config.token}"}
        if self.config.username:
            return BasicAuth(self.config.username, self.config.password), {}
        return None, {}

    async def _get_json(self, url: str, params: Dict[str, str]) -> Any:
        session = await self._get_session()
        auth, headers = self._auth()
        async with session.get(url, params=params, auth=auth, headers=headers) as resp:
            if resp.status != 200:
                text = await resp.text()
                raise SinkError(f"InfluxDB 返回 {resp.status}: {text[:200]}")
            return await resp.json(content_type=None)

    async def list_databases(self) -> List[str]:
        """服务器上的数据库（v1）或存储桶（v2）名称"""
        base = self.config.base_url
        if self.is_v2:
            data = await self._get_json(f"{base}/api/v2/buckets", {"name": self.config.database})
            return [b.get("name") for b in data.get("buckets") or []]

        data = await self._get_json(f"{base}/query", {"q": "SHOW DATABASES"})
        names = []
        for result in data.get("results") or []:
            for series in result.get("series") or []:
                names.extend(row[0] for row in series.get("values") or [] if row)
        return names

    async def check_connection(self) -> None:
        try:
            names = await self.list_databases()
        except (ClientError, asyncio.TimeoutError) as e:
            raise SinkError(f"无法连接 InfluxDB ({self.config.base_url}): {e}") from e

        if self.config.database not in names:
            kind = "存储桶" if self.is_v2 else "数据库"
            raise SinkError(f"InfluxDB 上不存在{kind}: {self.config.database}")
        logger.info(f"InfluxDB 连接正常: {self.config.base_url} ({self.config.database})")

    async def write_points(self, records: Sequence[MetricRecord]) -> bool:
        points = [p for p in (to_point(r) for r in records) if p is not None]
        if not points:
            return True

        _, org, bucket = self._write_target()
        try:
            client = self._get_client()
            written = await client.write_api().write(bucket=bucket, org=org, record=points)
        except ApiException as e:
            logger.error(f"InfluxDB 写入失败: {e.status} - {e.reason}")
            return False
        except (ClientError, asyncio.TimeoutError) as e:
            logger.error(f"InfluxDB 写入失败: {e}")
            return False

        if not written:
            logger.error("InfluxDB 写入失败: 服务器未确认写入")
            return False
        logger.debug(f"已写入 {len(points)} 条指标")
        return True

    async def close(self):
        """关闭写入客户端和 HTTP 会话"""
        if self._client is not None:
            await self._client.close()
            self._client = None
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
