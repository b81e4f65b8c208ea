"""
本地 SOCKS5 中继

protocol=all 时，代理主机名通过隧道转发到这个本地 SOCKS5 端口。
只支持无认证 + CONNECT 命令（IPv4 / 域名 / IPv6 地址）。

Socks5Relay 是 asyncio 服务器；RelayThread 在后台线程中运行它，
便于同步的 ProcessSupervisor 启动和停止。
"""

import asyncio
import contextlib
import logging
import socket
import struct
import threading

from .exceptions import RelayError

logger = logging.getLogger(__name__)

SOCKS_VERSION = 5

# 认证方法
METHOD_NO_AUTH = 0x00
METHOD_NOT_ACCEPTABLE = 0xFF

# 命令
CMD_CONNECT = 0x01

# 地址类型
ATYP_IPV4 = 0x01
ATYP_DOMAIN = 0x03
ATYP_IPV6 = 0x04

# 应答码
REP_SUCCEEDED = 0x00
REP_GENERAL_FAILURE = 0x01
REP_HOST_UNREACHABLE = 0x04
REP_CONNECTION_REFUSED = 0x05
REP_COMMAND_NOT_SUPPORTED = 0x07
REP_ADDRESS_TYPE_NOT_SUPPORTED = 0x08


class Socks5Relay:
    """SOCKS5 服务器"""

    def __init__(self, host: str = "127.0.0.1", port: int = 1080):
        self.host = host
        self.port = port
        self._server: asyncio.AbstractServer | None = None
        self._connections: set[asyncio.Task] = set()

    async def start(self) -> None:
        """开始监听（port=0 时由系统分配端口）"""
        self._server = await asyncio.start_server(
            self._handle_client, host=self.host, port=self.port
        )
        self.port = self._server.sockets[0].getsockname()[1]
        logger.info(f"SOCKS5 中继已启动: {self.host}:{self.port}")

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        for task in list(self._connections):
            task.cancel()
        await asyncio.gather(*self._connections, return_exceptions=True)
        await self._server.wait_closed()
        self._server = None
        logger.info("SOCKS5 中继已停止")

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        self._connections.add(task)
        peer = writer.get_extra_info("peername")
        upstream_writer: asyncio.StreamWriter | None = None

        try:
            target = await self._negotiate(reader, writer)
            if target is None:
                return

            host, port = target
            try:
                upstream_reader, upstream_writer = await asyncio.open_connection(host, port)
            except ConnectionRefusedError:
                await self._reply(writer, REP_CONNECTION_REFUSED)
                return
            except OSError as e:
                logger.debug(f"SOCKS5 连接目标失败: {host}:{port}, {e}")
                await self._reply(writer, REP_HOST_UNREACHABLE)
                return

            bound = upstream_writer.get_extra_info("sockname")
            await self._reply(writer, REP_SUCCEEDED, bound)
            logger.debug(f"SOCKS5 {peer} -> {host}:{port}")

            await asyncio.gather(
                self._pipe(reader, upstream_writer),
                self._pipe(upstream_reader, writer),
            )
        except asyncio.IncompleteReadError:
            pass
        except ConnectionError as e:
            logger.debug(f"SOCKS5 连接中断: {peer}, {e}")
        finally:
            self._connections.discard(task)
            for w in (upstream_writer, writer):
                if w is not None:
                    w.close()
                    with contextlib.suppress(Exception):
                        await w.wait_closed()

    async def _negotiate(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> tuple[str, int] | None:
        """完成握手并解析 CONNECT 请求，返回目标地址"""
        version, method_count = await reader.readexactly(2)
        if version != SOCKS_VERSION:
            return None

        methods = await reader.readexactly(method_count)
        if METHOD_NO_AUTH not in methods:
            writer.write(bytes([SOCKS_VERSION, METHOD_NOT_ACCEPTABLE]))
            await writer.drain()
            return None

        writer.write(bytes([SOCKS_VERSION, METHOD_NO_AUTH]))
        await writer.drain()

        version, command, _, address_type = await reader.readexactly(4)
        if version != SOCKS_VERSION:
            return None

        if address_type == ATYP_IPV4:
            host = socket.inet_ntoa(await reader.readexactly(4))
        elif address_type == ATYP_DOMAIN:
            length = (await reader.readexactly(1))[0]
            host = (await reader.readexactly(length)).decode("utf-8", errors="replace")
        elif address_type == ATYP_IPV6:
            host = socket.inet_ntop(socket.AF_INET6, await reader.readexactly(16))
        else:
            await self._reply(writer, REP_ADDRESS_TYPE_NOT_SUPPORTED)
            return None

        port = struct.unpack(">H", await reader.readexactly(2))[0]

        if command != CMD_CONNECT:
            await self._reply(writer, REP_COMMAND_NOT_SUPPORTED)
            return None
        return host, port

    async def _reply(
        self,
        writer: asyncio.StreamWriter,
        code: int,
        bound: tuple | None = None,
    ) -> None:
        address, port = ("0.0.0.0", 0) if not bound else bound[:2]
        try:
            packed = socket.inet_pton(socket.AF_INET6, address)
            address_type = ATYP_IPV6
        except OSError:
            packed = socket.inet_aton(address)
            address_type = ATYP_IPV4
        writer.write(
            bytes([SOCKS_VERSION, code, 0x00, address_type]) + packed + struct.pack(">H", port)
        )
        await writer.drain()

    async def _pipe(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                writer.write(data)
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            if writer.can_write_eof():
                with contextlib.suppress(OSError):
                    writer.write_eof()


class RelayThread(threading.Thread):
    """在后台线程的事件循环中运行 Socks5Relay"""

    def __init__(self, relay: Socks5Relay):
        super().__init__(name=f"socks5-relay-{relay.port}", daemon=True)
        self.relay = relay
        self._loop = asyncio.new_event_loop()
        self._ready = threading.Event()
        self._error: BaseException | None = None

    def run(self) -> None:
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self.relay.start())
        except OSError as e:
            self._error = e
            self._ready.set()
            self._loop.close()
            return

        self._ready.set()
        try:
            self._loop.run_forever()
        finally:
            self._loop.run_until_complete(self.relay.stop())
            self._loop.close()

    def start(self) -> None:
        """启动线程，等待监听端口绑定完成"""
        super().start()
        self._ready.wait()
        if self._error is not None:
            self.join()
            raise RelayError(
                f"SOCKS5 中继无法监听 {self.relay.host}:{self.relay.port}: {self._error}"
            ) from self._error

    def stop(self, timeout: float | None = 5.0) -> None:
        """停止中继并等待线程结束"""
        if not self.is_alive():
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self.join(timeout)
        if self.is_alive():
            logger.warning("SOCKS5 中继线程未在超时内退出")
