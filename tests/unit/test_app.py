import argparse
import os
import sys
from unittest.mock import MagicMock, patch

# テストファイルから見た app.py への正しいパス
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app import build_config, config, main


def make_args(**kwargs):
    values = dict(host=None, port=None, serial=None, listen_port=None, position=None, fanout=None)
    values.update(kwargs)
    return argparse.Namespace(**values)


def test_build_config_without_overrides_keeps_defaults():
    cfg = build_config(make_args())
    assert cfg == config
    assert cfg is not config


def test_build_config_applies_overrides():
    cfg = build_config(make_args(host="caster.local", port=2101, serial="ABC123",
                                 listen_port=9001, position=[1.0, 2.0, 3.0], fanout="queued"))

    assert cfg.UPSTREAM_HOST == "caster.local"
    assert cfg.UPSTREAM_PORT == 2101
    assert cfg.SERIAL_NUMBER == "ABC123"
    assert cfg.DOWNSTREAM_PORT == 9001
    assert (cfg.ECEF_X, cfg.ECEF_Y, cfg.ECEF_Z) == (1.0, 2.0, 3.0)
    assert cfg.FANOUT_MODE == "queued"
    # グローバル設定は変更しない
    assert config.SERIAL_NUMBER != "ABC123"


def test_main_rejects_invalid_serial():
    assert main(["--serial", "不正なシリアル"]) == 2


@patch('app.wait_for_quit')
@patch('app.RelayService')
def test_main_starts_and_stops_service(mock_service_cls, mock_wait):
    service = MagicMock()
    service.start.return_value = ("0.0.0.0", 9000)
    mock_service_cls.from_config.return_value = service

    assert main(["--listen-port", "9000"]) == 0

    service.start.assert_called_once()
    mock_wait.assert_called_once_with(service)
    service.stop.assert_called_once()


@patch('app.wait_for_quit', side_effect=KeyboardInterrupt)
@patch('app.RelayService')
def test_main_stops_on_keyboard_interrupt(mock_service_cls, mock_wait):
    service = MagicMock()
    service.start.return_value = ("0.0.0.0", 9000)
    mock_service_cls.from_config.return_value = service

    assert main([]) == 0
    service.stop.assert_called_once()


@patch('app.RelayService')
def test_main_reports_listener_failure(mock_service_cls):
    service = MagicMock()
    service.start.side_effect = OSError("address in use")
    mock_service_cls.from_config.return_value = service

    assert main([]) == 1
