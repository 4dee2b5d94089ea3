"""Relay service: wires the components together and owns the two long-running threads."""

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional, Tuple

from config.settings import Config
from protocol import Position

from .acceptor import DownstreamAcceptor
from .broadcaster import Broadcaster
from .registry import ClientRegistry, DownstreamClient, QueuedDownstreamClient
from .upstream import UpstreamLink

logger = logging.getLogger(__name__)

FANOUT_MODES = ("direct", "queued")


@dataclass
class RelayContext:
    """中継インスタンスごとの共有状態（クライアント集合 + 停止シグナル）"""
    registry: ClientRegistry = field(default_factory=ClientRegistry)
    stop_event: threading.Event = field(default_factory=threading.Event)


class RelayService:
    """上流1本 → 下流 N 本の中継サービス"""

    def __init__(self, link: UpstreamLink, acceptor: DownstreamAcceptor,
                 broadcaster: Broadcaster, context: RelayContext, listen_port: int = 9000):
        self.link = link
        self.acceptor = acceptor
        self.broadcaster = broadcaster
        self.context = context
        self.listen_port = listen_port
        self._threads = []

    @classmethod
    def from_config(cls, cfg: Config, context: Optional[RelayContext] = None) -> "RelayService":
        """設定から各コンポーネントを組み立てる"""
        if cfg.FANOUT_MODE not in FANOUT_MODES:
            raise ValueError(f"Invalid FANOUT_MODE {cfg.FANOUT_MODE!r}: expected one of {FANOUT_MODES}")

        context = context or RelayContext()
        link = UpstreamLink(
            cfg.UPSTREAM_HOST, cfg.UPSTREAM_PORT, cfg.SERIAL_NUMBER,
            Position(cfg.ECEF_X, cfg.ECEF_Y, cfg.ECEF_Z),
            retry_delay=cfg.RETRY_DELAY_S,
            connect_timeout=cfg.CONNECT_TIMEOUT_S,
            read_timeout=cfg.UPSTREAM_READ_TIMEOUT_S,
            stop_event=context.stop_event,
        )

        write_timeout = cfg.CLIENT_WRITE_TIMEOUT_S
        if cfg.FANOUT_MODE == "queued":
            def client_factory(sock, addr):
                return QueuedDownstreamClient(sock, addr, write_timeout, cfg.CLIENT_QUEUE_SIZE)
        else:
            def client_factory(sock, addr):
                return DownstreamClient(sock, addr, write_timeout)

        acceptor = DownstreamAcceptor(
            context.registry, context.stop_event, host=cfg.DOWNSTREAM_HOST,
            client_factory=client_factory, poll_interval=cfg.ACCEPT_POLL_INTERVAL_S,
        )
        broadcaster = Broadcaster(
            link, context.registry, context.stop_event, chunk_size=cfg.READ_CHUNK_SIZE,
            stats_interval=cfg.STATS_LOG_INTERVAL, debug_data=cfg.DEBUG_RELAY_DATA,
        )
        return cls(link, acceptor, broadcaster, context, listen_port=cfg.DOWNSTREAM_PORT)

    @property
    def listen_address(self) -> Optional[Tuple[str, int]]:
        return self.acceptor.address

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> Tuple[str, int]:
        """待ち受けを開始し、中継スレッドと受付スレッドを起動する"""
        address = self.acceptor.bind(self.listen_port)
        self._threads = [
            threading.Thread(target=self.broadcaster.run, name="relay-broadcaster", daemon=True),
            threading.Thread(target=self.acceptor.start, args=(self.listen_port,),
                             name="relay-acceptor", daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        return address

    def wait(self, timeout: Optional[float] = None) -> bool:
        """停止シグナルを待つ。停止したら True"""
        return self.context.stop_event.wait(timeout)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """
        順序立てたシャットダウン

        停止シグナル → 待ち受けソケットと上流ソケットを外から閉じてブロッキング呼び出しを
        中断 → 両スレッドを join → 残っている下流クライアントをクローズ。
        """
        logger.info("Stopping relay...")
        self.context.stop_event.set()
        self.acceptor.stop()
        self.link.close()

        for thread in self._threads:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"Thread {thread.name} did not stop within {timeout}s")

        self.context.registry.close_all(timeout)
        logger.info("Relay stopped.")
