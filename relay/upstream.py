"""Upstream (Polaris) connection: connect with retry, handshake and chunk reads."""

import logging
import socket
import threading
from typing import Callable, Optional

from protocol import Position, build_auth_frame, build_position_frame
from utils.net import shutdown_and_close

logger = logging.getLogger(__name__)


class UpstreamDisconnected(ConnectionError):
    """上流接続の切断（0バイト読み込み・読み込みエラー・タイムアウト）"""
    pass


class UpstreamLink:
    """上流接続管理クラス

    接続失敗時は固定の待ち時間で無制限にリトライする。待ち時間は停止イベントで
    待つので、シャットダウン時はすぐに抜けられる。
    """

    def __init__(self, host: str, port: int, token: str, position: Position,
                 retry_delay: float = 1.0, connect_timeout: Optional[float] = 10.0,
                 read_timeout: Optional[float] = None,
                 stop_event: Optional[threading.Event] = None,
                 connection_factory: Callable[..., socket.socket] = socket.create_connection):
        self.host = host
        self.port = port
        self.token = token
        self.position = position
        self.retry_delay = retry_delay
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout or None
        self.stop_event = stop_event or threading.Event()
        self.connection_factory = connection_factory
        self.connection: Optional[socket.socket] = None
        self._lock = threading.Lock()
        self.stats = {"connect_attempts": 0, "connections": 0}

        # 送信前に検出できるエラー（非ASCIIトークン・範囲外座標）は起動時に失敗させる
        self._auth_frame = build_auth_frame(token)
        self._position_frame = build_position_frame(position)

    def connect(self, host: Optional[str] = None, port: Optional[int] = None) -> Optional[socket.socket]:
        """
        接続が成功するまでリトライする

        Returns:
            接続済みソケット。停止イベントがセットされた場合は None
        """
        host = host or self.host
        port = port or self.port

        while not self.stop_event.is_set():
            self.stats["connect_attempts"] += 1
            try:
                logger.info(f"Connecting to upstream server {host}:{port}...")
                connection = self.connection_factory((host, port), timeout=self.connect_timeout)
            except OSError as e:
                logger.warning(f"Failed to connect to server. {e} Retrying in {self.retry_delay}s...")
                if self.stop_event.wait(self.retry_delay):
                    break
                continue

            connection.settimeout(self.read_timeout)
            return connection

        logger.info("Upstream connect cancelled by shutdown.")
        return None

    def authenticate(self, connection: socket.socket, token: Optional[str] = None) -> None:
        """認証フレーム（シリアル番号）を送信。送信失敗は OSError として呼び出し元へ"""
        frame = self._auth_frame if token is None else build_auth_frame(token)
        logger.info("Sending Auth....")
        connection.sendall(frame)

    def report_position(self, connection: socket.socket, position: Optional[Position] = None) -> None:
        """位置フレームを送信。送信失敗は OSError として呼び出し元へ"""
        if position is None:
            position, frame = self.position, self._position_frame
        else:
            frame = build_position_frame(position)
        logger.info(f"Sending Position: {position}")
        connection.sendall(frame)

    def read_chunk(self, connection: socket.socket, max_bytes: int = 1024) -> bytes:
        """
        最大 max_bytes を読み込む（届いている分だけ返す）

        Raises:
            UpstreamDisconnected: 0バイト（相手側クローズ）、読み込みエラー、タイムアウトの場合
        """
        try:
            chunk = connection.recv(max_bytes)
        except socket.timeout as e:
            raise UpstreamDisconnected(f"No data from upstream for {self.read_timeout}s") from e
        except OSError as e:
            raise UpstreamDisconnected(f"Upstream read failed: {e}") from e

        if not chunk:
            # 相手側クローズ。切断として再接続させる
            raise UpstreamDisconnected("Upstream closed the connection (zero-length read)")
        return chunk

    def establish(self) -> Optional[socket.socket]:
        """
        接続してハンドシェイク（認証 → 位置送信）を行う

        ハンドシェイクの送信に失敗した場合は接続失敗と同じ扱いで、待ってから接続し直す。
        ハンドシェイクは接続成功1回につき1回だけ行われる。
        """
        while True:
            connection = self.connect()
            if connection is None:
                return None

            try:
                self.authenticate(connection)
                self.report_position(connection)
            except OSError as e:
                logger.warning(f"Handshake with upstream failed: {e}")
                shutdown_and_close(connection)
                if self.stop_event.wait(self.retry_delay):
                    return None
                continue

            with self._lock:
                if self.stop_event.is_set():
                    # close() と競合した場合はここで閉じる
                    shutdown_and_close(connection)
                    return None
                self.connection = connection
            self.stats["connections"] += 1
            logger.info(f"Upstream connection established ({self.host}:{self.port}).")
            return connection

    def reconnect(self) -> Optional[socket.socket]:
        """現在の接続を閉じてから接続し直す"""
        self.close()
        return self.establish()

    def close(self) -> None:
        """現在の接続を閉じる（別スレッドでブロック中の read_chunk も起こす）"""
        with self._lock:
            connection, self.connection = self.connection, None
        if connection is not None:
            shutdown_and_close(connection)
