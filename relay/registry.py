"""Downstream client handles and the thread-safe client registry."""

import logging
import queue
import socket
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Tuple

from utils.net import readable_now, shutdown_and_close

logger = logging.getLogger(__name__)


class DownstreamClient:
    """下流クライアント（ソケット + 生存フラグ）

    書き込みに失敗したクライアントは close() されるだけで、レジストリからの削除は
    次のサイクルの prune_disconnected() で行われる。その間は生存フラグが False の
    ままレジストリに残り、書き込み対象にはならない。
    """

    def __init__(self, sock: socket.socket, address: Optional[Tuple] = None,
                 write_timeout: Optional[float] = None):
        self.sock = sock
        self.address = address
        self._alive = True
        self._close_lock = threading.Lock()
        sock.settimeout(write_timeout or None)

    def __repr__(self) -> str:
        state = "alive" if self._alive else "closed"
        return f"<{type(self).__name__} {self.name} {state}>"

    @property
    def name(self) -> str:
        if self.address:
            return f"{self.address[0]}:{self.address[1]}"
        return f"fd={self.sock.fileno()}"

    @property
    def alive(self) -> bool:
        return self._alive

    def send(self, chunk: bytes) -> None:
        """チャンク全体を書き込む。失敗時は OSError"""
        if not self._alive:
            raise ConnectionError(f"Client {self.name} is already closed")
        self.sock.sendall(chunk)

    def poll_disconnected(self) -> bool:
        """
        書き込みをせずに相手側の切断を検出する

        読み込み可能で recv が 0 バイトを返せば相手側クローズ。クライアントから
        送られてきたデータは上流へは転送しないので読み捨てる。

        Returns:
            切断済み（またはクローズ済み）なら True
        """
        if not self._alive:
            return True
        if self.sock.fileno() == -1:
            # 外部で close されたソケット
            self.close()
            return True
        try:
            if readable_now(self.sock):
                data = self.sock.recv(4096)
                if not data:
                    logger.info(f"Client {self.name} disconnected.")
                    self.close()
                else:
                    logger.debug(f"Discarded {len(data)} bytes sent by client {self.name}")
        except OSError as e:
            logger.info(f"Client {self.name} connection error: {e}")
            self.close()
        return not self._alive

    def close(self) -> None:
        """冪等なクローズ。以後このクライアントには書き込まない"""
        with self._close_lock:
            if not self._alive:
                return
            self._alive = False
        shutdown_and_close(self.sock)

    def join(self, timeout: Optional[float] = None) -> None:
        """送信スレッドを持たないので何もしない"""
        pass


class QueuedDownstreamClient(DownstreamClient):
    """クライアントごとの送信キュー + 送信スレッド

    遅いクライアントが他のクライアントへの配信を止めないようにする。
    キューが溢れたクライアントは欠落したストリームを渡さないよう切断する。
    """

    def __init__(self, sock: socket.socket, address: Optional[Tuple] = None,
                 write_timeout: Optional[float] = None, queue_size: int = 256):
        super().__init__(sock, address, write_timeout)
        self.queue: "queue.Queue[Optional[bytes]]" = queue.Queue(maxsize=queue_size)
        self._writer = threading.Thread(
            target=self._write_loop, name=f"client-writer-{self.name}", daemon=True
        )
        self._writer.start()

    def send(self, chunk: bytes) -> None:
        if not self._alive:
            raise ConnectionError(f"Client {self.name} is already closed")
        try:
            self.queue.put_nowait(chunk)
        except queue.Full:
            raise ConnectionError(f"Outbound queue full for client {self.name}") from None

    def _write_loop(self) -> None:
        while True:
            chunk = self.queue.get()
            if chunk is None or not self._alive:
                break
            try:
                self.sock.sendall(chunk)
            except OSError as e:
                logger.warning(f"Write to client {self.name} failed: {e}")
                self.close()
                break

    def close(self) -> None:
        was_alive = self._alive
        super().close()
        if was_alive:
            try:
                self.queue.put_nowait(None)
            except queue.Full:
                # 書き込みスレッドは _alive を見て終了する
                pass

    def join(self, timeout: Optional[float] = None) -> None:
        self._writer.join(timeout)


class ClientRegistry:
    """接続中の下流クライアント集合（スレッドセーフ）

    add と「prune → 全クライアントへの書き込み」は同じロックで排他する。
    ロックは再入可能なので cycle() の中から prune_disconnected() / for_each() を呼べる。
    """

    def __init__(self):
        self._clients: List[DownstreamClient] = []
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def clients(self) -> List[DownstreamClient]:
        with self._lock:
            return list(self._clients)

    def add(self, client: DownstreamClient) -> None:
        with self._lock:
            if not client.alive or client in self._clients:
                logger.debug(f"Ignoring add of {client!r}")
                return
            self._clients.append(client)
            total = len(self._clients)
        logger.info(f"Client {client.name} connected (total: {total})")

    def remove(self, client: DownstreamClient) -> None:
        with self._lock:
            try:
                self._clients.remove(client)
            except ValueError:
                # 既に削除済み
                return
        client.close()

    @contextmanager
    def cycle(self) -> Iterator["ClientRegistry"]:
        """1回のブロードキャスト分の排他区間"""
        with self._lock:
            yield self

    def prune_disconnected(self) -> int:
        """切断済み・クローズ済みのクライアントを削除してクローズする（書き込みはしない）

        Returns:
            削除したクライアント数
        """
        with self._lock:
            dead = [c for c in self._clients if c.poll_disconnected()]
            if not dead:
                return 0
            for client in dead:
                self.remove(client)
            total = len(self._clients)

        logger.info(f"Pruned {len(dead)} disconnected client(s) (total: {total})")
        return len(dead)

    def for_each(self, fn: Callable[[DownstreamClient], bool]) -> int:
        """生存中のクライアントのスナップショットに fn を適用し、True を返した数を返す"""
        with self._lock:
            snapshot = [c for c in self._clients if c.alive]
            return sum(1 for client in snapshot if fn(client))

    def close_all(self, timeout: Optional[float] = 2.0) -> None:
        """全クライアントをクローズし、送信スレッドの終了を待つ"""
        with self._lock:
            clients, self._clients = self._clients, []
        for client in clients:
            client.close()
        for client in clients:
            client.join(timeout)
        if clients:
            logger.info(f"Closed {len(clients)} downstream client(s).")
