import os
import socket
import sys
import threading
import time
from unittest.mock import MagicMock

import pytest

# テストファイルから見たプロジェクトルートへのパス
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from relay.broadcaster import Broadcaster
from relay.registry import ClientRegistry, DownstreamClient, QueuedDownstreamClient


@pytest.fixture
def socket_pairs():
    """(クライアント側, ピア側) のソケットペアを作成し、最後に閉じる"""
    created = []

    def factory(count=1):
        pairs = [socket.socketpair() for _ in range(count)]
        created.extend(pairs)
        return pairs

    yield factory

    for a, b in created:
        a.close()
        b.close()


def recv_exactly(sock: socket.socket, size: int, timeout: float = 2.0) -> bytes:
    sock.settimeout(timeout)
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def test_add_keeps_insertion_order(socket_pairs):
    registry = ClientRegistry()
    clients = [DownstreamClient(a, ("127.0.0.1", 1000 + i)) for i, (a, _) in enumerate(socket_pairs(3))]
    for client in clients:
        registry.add(client)

    assert len(registry) == 3
    assert registry.clients() == clients


def test_add_ignores_closed_and_duplicate_clients(socket_pairs):
    registry = ClientRegistry()
    (a1, _), (a2, _) = socket_pairs(2)
    live = DownstreamClient(a1)
    closed = DownstreamClient(a2)
    closed.close()

    registry.add(live)
    registry.add(live)
    registry.add(closed)

    assert registry.clients() == [live]


def test_prune_removes_client_closed_by_peer(socket_pairs):
    registry = ClientRegistry()
    (a1, b1), (a2, _) = socket_pairs(2)
    gone = DownstreamClient(a1)
    stays = DownstreamClient(a2)
    registry.add(gone)
    registry.add(stays)

    b1.close()

    assert registry.prune_disconnected() == 1
    assert registry.clients() == [stays]
    assert gone.alive is False
    assert stays.alive is True


def test_closed_client_lingers_until_next_prune(socket_pairs):
    """書き込み失敗でクローズされたクライアントは次の prune まで残るが書き込まれない"""
    registry = ClientRegistry()
    (a1, _), (a2, _) = socket_pairs(2)
    failed = DownstreamClient(a1)
    ok = DownstreamClient(a2)
    registry.add(failed)
    registry.add(ok)

    failed.close()
    visited = []
    registry.for_each(lambda c: visited.append(c) or True)

    assert len(registry) == 2
    assert visited == [ok]

    assert registry.prune_disconnected() == 1
    assert registry.clients() == [ok]


def test_prune_drains_data_sent_by_client(socket_pairs):
    registry = ClientRegistry()
    ((a, b),) = socket_pairs(1)
    client = DownstreamClient(a)
    registry.add(client)

    b.sendall(b"$GPGGA,ignored\r\n")
    time.sleep(0.05)

    assert registry.prune_disconnected() == 0
    assert client.alive is True
    assert len(registry) == 1


def test_for_each_counts_successes(socket_pairs):
    registry = ClientRegistry()
    for a, _ in socket_pairs(3):
        registry.add(DownstreamClient(a))

    results = iter([True, False, True])
    assert registry.for_each(lambda c: next(results)) == 2


def test_send_to_closed_client_raises(socket_pairs):
    ((a, _),) = socket_pairs(1)
    client = DownstreamClient(a)
    client.close()
    client.close()  # 冪等

    with pytest.raises(ConnectionError):
        client.send(b"data")


def test_remove_and_close_all(socket_pairs):
    registry = ClientRegistry()
    clients = [DownstreamClient(a) for a, _ in socket_pairs(3)]
    for client in clients:
        registry.add(client)

    registry.remove(clients[0])
    registry.remove(clients[0])  # 既に削除済みなら何もしない
    assert clients[0].alive is False
    assert len(registry) == 2

    registry.close_all()
    assert len(registry) == 0
    assert all(not c.alive for c in clients)


def test_cycle_excludes_concurrent_add(socket_pairs):
    registry = ClientRegistry()
    (a1, _), (a2, _) = socket_pairs(2)
    registry.add(DownstreamClient(a1))
    late = DownstreamClient(a2)

    adder = threading.Thread(target=registry.add, args=(late,))
    with registry.cycle():
        adder.start()
        adder.join(0.1)
        # cycle 中は add がブロックされる
        assert adder.is_alive()
        assert len(registry) == 1
    adder.join(1.0)

    assert len(registry) == 2


def test_client_with_fd_above_fd_setsize_is_kept():
    """fd が 1024 以上でも健全なクライアントは切断扱いにしない"""
    resource = pytest.importorskip("resource")
    soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    wanted = 2048
    if hard != resource.RLIM_INFINITY and hard < wanted:
        pytest.skip(f"RLIMIT_NOFILE hard limit {hard} is too low")
    if soft != resource.RLIM_INFINITY and soft < wanted:
        resource.setrlimit(resource.RLIMIT_NOFILE, (wanted, hard))

    fillers = []
    pair = None
    try:
        # 1024 を超えるまで fd を消費する
        while not fillers or fillers[-1].fileno() < 1100:
            fillers.append(socket.socket(socket.AF_INET, socket.SOCK_STREAM))
        pair = socket.socketpair()
        a, b = pair
        assert a.fileno() >= 1024

        registry = ClientRegistry()
        client = DownstreamClient(a)
        registry.add(client)
        broadcaster = Broadcaster(MagicMock(), registry, threading.Event())

        assert broadcaster.relay(b"rtcm") == 1
        assert client.alive is True
        assert recv_exactly(b, 4) == b"rtcm"

        # 相手側クローズは fd が大きくても検出される
        b.close()
        broadcaster.relay(b"more")
        assert len(registry) == 0
    finally:
        if pair is not None:
            for s in pair:
                s.close()
        for s in fillers:
            s.close()
        resource.setrlimit(resource.RLIMIT_NOFILE, (soft, hard))


def test_close_all_waits_for_writer_threads(socket_pairs):
    registry = ClientRegistry()
    clients = [QueuedDownstreamClient(a) for a, _ in socket_pairs(2)]
    for client in clients:
        registry.add(client)

    registry.close_all(timeout=2.0)

    assert len(registry) == 0
    assert all(not c._writer.is_alive() for c in clients)


def test_prune_removes_socket_closed_elsewhere(socket_pairs):
    registry = ClientRegistry()
    ((a, _),) = socket_pairs(1)
    client = DownstreamClient(a)
    registry.add(client)

    a.close()

    assert registry.prune_disconnected() == 1
    assert client.alive is False
    assert len(registry) == 0


class TestQueuedDownstreamClient:

    def test_writes_chunks_in_order(self, socket_pairs):
        ((a, b),) = socket_pairs(1)
        client = QueuedDownstreamClient(a, queue_size=16)

        for chunk in (b"one", b"two", b"three"):
            client.send(chunk)

        assert recv_exactly(b, 11) == b"onetwothree"
        client.close()
        client.join(1.0)

    def test_full_queue_raises_connection_error(self, socket_pairs):
        ((a, _),) = socket_pairs(1)
        client = QueuedDownstreamClient(a, queue_size=2)

        # ピアが読まないので送信スレッドが sendall で詰まり、キューが溢れる
        with pytest.raises(ConnectionError):
            for _ in range(10000):
                client.send(b"y" * 65536)
        client.close()
        client.join(1.0)

    def test_close_stops_writer(self, socket_pairs):
        ((a, _),) = socket_pairs(1)
        client = QueuedDownstreamClient(a)
        client.close()
        client.join(1.0)

        assert client.alive is False
        with pytest.raises(ConnectionError):
            client.send(b"data")
