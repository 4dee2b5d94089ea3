"""Application configuration settings."""

import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    """アプリケーション設定"""
    # Upstream (Polaris) connection settings
    UPSTREAM_HOST: str = os.environ.get("UPSTREAM_HOST", "polaris.pointonenav.com")
    UPSTREAM_PORT: int = int(os.environ.get("UPSTREAM_PORT", "8088"))
    SERIAL_NUMBER: str = os.environ.get("SERIAL_NUMBER", "D00000000S1")  # 発行されたシリアル番号に置き換える

    # 受信機のおおよその位置（ECEF, メートル）。デフォルトは SF のオフィス
    ECEF_X: float = float(os.environ.get("ECEF_X", "-2702922.85"))
    ECEF_Y: float = float(os.environ.get("ECEF_Y", "-4259728.48"))
    ECEF_Z: float = float(os.environ.get("ECEF_Z", "3889319.38"))

    # Retry / timeout settings
    RETRY_DELAY_S: float = float(os.environ.get("RETRY_DELAY_S", "1.0"))
    CONNECT_TIMEOUT_S: float = float(os.environ.get("CONNECT_TIMEOUT_S", "10.0"))
    UPSTREAM_READ_TIMEOUT_S: float = float(os.environ.get("UPSTREAM_READ_TIMEOUT_S", "0"))  # 0 = 無効
    READ_CHUNK_SIZE: int = int(os.environ.get("READ_CHUNK_SIZE", "1024"))

    # Downstream listener settings
    DOWNSTREAM_HOST: str = os.environ.get("DOWNSTREAM_HOST", "0.0.0.0")
    DOWNSTREAM_PORT: int = int(os.environ.get("DOWNSTREAM_PORT", "9000"))
    ACCEPT_POLL_INTERVAL_S: float = float(os.environ.get("ACCEPT_POLL_INTERVAL_S", "0.5"))

    # Fan-out settings
    FANOUT_MODE: str = os.environ.get("FANOUT_MODE", "direct").lower()  # direct, queued
    CLIENT_WRITE_TIMEOUT_S: float = float(os.environ.get("CLIENT_WRITE_TIMEOUT_S", "5.0"))
    CLIENT_QUEUE_SIZE: int = int(os.environ.get("CLIENT_QUEUE_SIZE", "256"))

    # Debug settings
    DEBUG_RELAY_DATA: bool = os.environ.get("DEBUG_RELAY_DATA", "false").lower() == "true"
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    STATS_LOG_INTERVAL: int = int(os.environ.get("STATS_LOG_INTERVAL", "1000"))  # チャンク数ごとに統計をログ出力


# Global configuration instance
config = Config()
