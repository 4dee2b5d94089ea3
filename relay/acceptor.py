"""Downstream TCP listener feeding the client registry."""

import logging
import socket
import threading
from typing import Callable, Optional, Tuple

from utils.net import shutdown_and_close

from .registry import ClientRegistry, DownstreamClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[socket.socket, Tuple], DownstreamClient]


class DownstreamAcceptor:
    """下流クライアントの接続受付クラス"""

    def __init__(self, registry: ClientRegistry, stop_event: Optional[threading.Event] = None,
                 host: str = "0.0.0.0", client_factory: Optional[ClientFactory] = None,
                 poll_interval: float = 0.5):
        self.registry = registry
        self.stop_event = stop_event or threading.Event()
        self.host = host
        self.client_factory = client_factory or (lambda sock, addr: DownstreamClient(sock, addr))
        self.poll_interval = poll_interval
        self.server: Optional[socket.socket] = None
        self._closing = False

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        if self.server is None:
            return None
        return self.server.getsockname()[:2]

    def bind(self, port: int) -> Tuple[str, int]:
        """待ち受けソケットを作成して listen する（port=0 で空きポート）"""
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            server.bind((self.host, port))
            server.listen()
            # close() で accept が起きない環境でも停止イベントを見られるようにする
            server.settimeout(self.poll_interval)
        except OSError:
            server.close()
            raise
        self.server = server
        logger.info(f"Server listening on port {self.address[1]}")
        return self.address

    def start(self, port: int = 9000) -> None:
        """
        接続受付ループ（ブロッキング）

        停止時（stop() で待ち受けソケットが閉じられた場合）は正常終了として info ログ、
        それ以外のソケットエラーでは error ログを出して終了する。どちらの場合も
        待ち受けソケットは必ず解放する。
        """
        try:
            if self.server is None:
                self.bind(port)

            while not self._stopping():
                try:
                    conn, addr = self.server.accept()
                except socket.timeout:
                    continue

                client = self.client_factory(conn, addr)
                # 他スレッドのブロードキャスト対象に追加
                self.registry.add(client)
        except OSError as e:
            if self._stopping():
                logger.info("Shutting down server for exit.")
            else:
                logger.error(f"Server socket error. {e}")
        finally:
            server, self.server = self.server, None
            shutdown_and_close(server)
            logger.info("Downstream listener closed.")

    def stop(self) -> None:
        """待ち受けソケットを閉じて accept を中断させる"""
        self._closing = True
        server = self.server
        if server is not None:
            shutdown_and_close(server)

    def _stopping(self) -> bool:
        return self._closing or self.stop_event.is_set()
