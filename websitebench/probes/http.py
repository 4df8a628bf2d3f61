"""
HTTP 计时探测

使用 aiohttp 的请求跟踪（TraceConfig）记录各阶段时间点，
时间均为相对请求开始的累计毫秒数（与 curl 的 -w 计时一致）。
"""
import asyncio
import logging
import random
import socket
import time
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import aiohttp
from aiohttp import ClientError, ClientTimeout, TraceConfig
from aiohttp.abc import AbstractResolver
from aiohttp.resolver import ThreadedResolver

from ..config.sites import CheckType, SiteEntry
from ..constants import USER_AGENT_SUFFIX
from ..core.aggregation import CURL_FIELDS, build_metric
from ..core.models import AggregatedMetric, Sample
from .base import Probe


logger = logging.getLogger(__name__)


class ShuffledResolver(AbstractResolver):
    """打乱 DNS 解析结果顺序，避免总是连接同一个地址"""

    def __init__(
        self,
        resolver: Optional[AbstractResolver] = None,
        rng: Optional[random.Random] = None
    ):
        self._resolver = resolver or ThreadedResolver()
        self._rng = rng or random.Random()

    async def resolve(self, host: str, port: int = 0, family: int = socket.AF_INET) -> List[Dict[str, Any]]:
        hosts = list(await self._resolver.resolve(host, port, family))
        self._rng.shuffle(hosts)
        return hosts

    async def close(self) -> None:
        await self._resolver.close()


class RequestTimer:
    """单个请求的各阶段时间点"""

    def __init__(self, secure: bool):
        self.secure = secure
        self.start: Optional[float] = None
        self.dns_end: Optional[float] = None
        self.connected: Optional[float] = None
        self.headers_sent: Optional[float] = None
        self.first_byte: Optional[float] = None
        self.finished: Optional[float] = None

    def mark(self, point: str):
        setattr(self, point, time.perf_counter())

    def _since_start(self, point: Optional[float]) -> Optional[float]:
        if self.start is None or point is None:
            return None
        return (point - self.start) * 1000

    def to_sample(self, status_code: int) -> Sample:
        """
        转换为样本

        未经历的阶段（如 IP 直连没有 DNS 解析）取上一阶段的时间点。
        aiohttp 无法区分 TCP 连接与 TLS 握手，HTTPS 下两者都记为连接建立完成的时间。
        """
        dns = self.dns_end or self.start
        connected = self.connected or dns
        headers_sent = self.headers_sent or connected
        return Sample(
            dns=self._since_start(dns),
            connect=self._since_start(connected),
            tls_handshake=self._since_start(connected) if self.secure else 0.0,
            pre_transfer=self._since_start(headers_sent),
            ttfb=self._since_start(self.first_byte),
            total=self._since_start(self.finished),
            status_code=status_code,
        )


def _timer(ctx: SimpleNamespace) -> Optional[RequestTimer]:
    timer = ctx.trace_request_ctx
    return timer if isinstance(timer, RequestTimer) else None


def _marker(point: str):
    async def handler(session, ctx, params):
        timer = _timer(ctx)
        if timer is not None:
            timer.mark(point)
    return handler


def create_trace_config() -> TraceConfig:
    """创建记录各阶段时间点的 TraceConfig"""
    trace_config = TraceConfig()
    trace_config.on_request_start.append(_marker("start"))
    trace_config.on_dns_resolvehost_end.append(_marker("dns_end"))
    trace_config.on_connection_create_end.append(_marker("connected"))
    trace_config.on_request_headers_sent.append(_marker("headers_sent"))
    trace_config.on_request_end.append(_marker("first_byte"))
    return trace_config


class HttpProbe(Probe):
    """原始 HTTP 计时探测（每次检查并发 N 个请求）"""

    def __init__(
        self,
        repeat_count: int = 3,
        user_agent: Optional[str] = None,
        ignore_ssl_errors: bool = False,
        rng: Optional[random.Random] = None
    ):
        self.repeat_count = repeat_count
        self.user_agent = user_agent or f"{aiohttp.http.SERVER_SOFTWARE} {USER_AGENT_SUFFIX}"
        self.ignore_ssl_errors = ignore_ssl_errors
        self._rng = rng

    @property
    def check_type(self) -> CheckType:
        return CheckType.CURL

    def _create_session(self, site: SiteEntry) -> aiohttp.ClientSession:
        """每次检查使用独立的会话，不复用连接和 DNS 缓存"""
        connector = aiohttp.TCPConnector(
            resolver=ShuffledResolver(rng=self._rng),
            use_dns_cache=False,
            force_close=True,
            ssl=False if self.ignore_ssl_errors else True
        )
        return aiohttp.ClientSession(
            connector=connector,
            timeout=ClientTimeout(total=site.request_timeout),
            headers={"User-Agent": self.user_agent},
            trace_configs=[create_trace_config()]
        )

    async def _measure(self, session: aiohttp.ClientSession, site: SiteEntry) -> Sample:
        """发起一次请求并读取完整响应"""
        timer = RequestTimer(secure=urlparse(site.url).scheme == "https")
        async with session.get(site.url, trace_request_ctx=timer) as resp:
            await resp.read()
            timer.mark("finished")
            return timer.to_sample(resp.status)

    async def _sample(
        self,
        session: aiohttp.ClientSession,
        site: SiteEntry,
        status_codes: List[int]
    ) -> Optional[Sample]:
        try:
            sample = await self._measure(session, site)
        except asyncio.TimeoutError:
            logger.warning(f"[{site.name}] 请求超时 ({site.request_timeout} 秒)")
            return None
        except ClientError as e:
            logger.warning(f"[{site.name}] 请求失败: {e}")
            return None

        # 按完成顺序记录状态码
        if sample.status_code is not None:
            status_codes.append(sample.status_code)
        return sample

    async def run(self, site: SiteEntry) -> Optional[AggregatedMetric]:
        status_codes: List[int] = []
        async with self._create_session(site) as session:
            samples = await asyncio.gather(*(
                self._sample(session, site, status_codes)
                for _ in range(self.repeat_count)
            ))

        succeeded = sum(1 for s in samples if s is not None)
        logger.debug(f"[{site.name}] HTTP 请求完成 {succeeded}/{self.repeat_count}")

        return build_metric(
            site,
            samples,
            self.repeat_count,
            CURL_FIELDS,
            status_codes=status_codes
        )
