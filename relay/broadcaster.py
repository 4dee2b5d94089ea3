"""Relay loop: read from upstream and fan the bytes out to every downstream client."""

import logging
import threading
import time
from typing import Optional

from utils.net import hex_preview

from .registry import ClientRegistry, DownstreamClient
from .upstream import UpstreamDisconnected, UpstreamLink

logger = logging.getLogger(__name__)


class Broadcaster:
    """上流データの中継クラス

    1サイクル = チャンク読み込み → 切断済みクライアントの削除 → 全クライアントへ書き込み。
    書き込みに失敗したクライアントはその場でクローズし、削除は次のサイクルで行う。
    """

    def __init__(self, link: UpstreamLink, registry: ClientRegistry,
                 stop_event: Optional[threading.Event] = None, chunk_size: int = 1024,
                 stats_interval: int = 1000, debug_data: bool = False):
        self.link = link
        self.registry = registry
        self.stop_event = stop_event or link.stop_event
        self.chunk_size = chunk_size
        self.stats_interval = stats_interval
        self.debug_data = debug_data
        self.stats = {"chunks": 0, "bytes": 0, "reconnects": 0, "write_failures": 0,
                      "start_time": time.time()}

    def run(self) -> None:
        """停止イベントがセットされるまで中継を続ける"""
        connection = self.link.connection or self.link.establish()

        while connection is not None and not self.stop_event.is_set():
            try:
                chunk = self.link.read_chunk(connection, self.chunk_size)
            except UpstreamDisconnected as e:
                if self.stop_event.is_set():
                    break
                logger.warning(f"Upstream connection lost: {e}. Reconnecting...")
                self.stats["reconnects"] += 1
                connection = self.link.reconnect()
                continue

            self.relay(chunk)

        logger.info("Broadcaster stopped.")

    def relay(self, chunk: bytes) -> int:
        """
        1チャンクを全クライアントへ書き込む

        Returns:
            書き込みに成功したクライアント数
        """
        if self.debug_data:
            logger.debug(f"Relaying chunk: {hex_preview(chunk)}")

        with self.registry.cycle():
            self.registry.prune_disconnected()
            delivered = self.registry.for_each(lambda client: self._deliver(client, chunk))

        self.stats["chunks"] += 1
        self.stats["bytes"] += len(chunk)
        if self.stats_interval and self.stats["chunks"] % self.stats_interval == 0:
            elapsed = time.time() - self.stats["start_time"]
            logger.info(
                f"Stats: {self.stats['chunks']} chunks, {self.stats['bytes']} bytes, "
                f"{len(self.registry)} clients, {self.stats['reconnects']} reconnects, "
                f"elapsed: {elapsed:.1f}s"
            )
        return delivered

    def _deliver(self, client: DownstreamClient, chunk: bytes) -> bool:
        try:
            client.send(chunk)
            return True
        except OSError as e:
            # 他のクライアントには影響させない。削除は次サイクルの prune で行う
            logger.warning(f"Write to client {client.name} failed: {e}. Closing.")
            self.stats["write_failures"] += 1
            client.close()
            return False
