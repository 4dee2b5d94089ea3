"""Socket helpers shared by the upstream link, the acceptor and downstream clients."""

import logging
import select
import selectors
import socket
from typing import Optional

logger = logging.getLogger(__name__)


def shutdown_and_close(sock: Optional[socket.socket]) -> None:
    """ソケットを shutdown してから close する

    別スレッドでブロック中の recv / accept / sendall を起こすため、
    close の前に shutdown(SHUT_RDWR) を呼ぶ。既に切断済みのソケットでは
    shutdown が失敗するが、close は必ず行う。
    """
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as e:
        # 未接続・切断済みの場合は ENOTCONN などになる
        logger.debug(f"Socket shutdown skipped: {e}")
    try:
        sock.close()
    except OSError as e:
        logger.debug(f"Socket close failed: {e}")


def hex_preview(data: bytes, limit: int = 20) -> str:
    """デバッグ出力用の短い16進プレビュー"""
    if len(data) <= limit:
        return data.hex()
    return f"{data[:limit].hex()}... ({len(data)} bytes)"


def readable_now(sock: socket.socket) -> bool:
    """ブロックせずに読み込み可能（データ・EOF・エラー）かを調べる

    select.select は FD_SETSIZE (1024) 以上の fd を扱えないので poll を使う。
    """
    if hasattr(select, "poll"):
        poller = select.poll()
        poller.register(sock, select.POLLIN)
        return bool(poller.poll(0))
    with selectors.DefaultSelector() as selector:
        selector.register(sock, selectors.EVENT_READ)
        return bool(selector.select(0))
