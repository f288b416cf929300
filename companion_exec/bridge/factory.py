"""Transport selection — done once, at startup."""

from __future__ import annotations

import logging

from companion_exec.bridge.base import HostBridge
from companion_exec.bridge.direct import DirectBridge
from companion_exec.bridge.message import MessageBridge, UnixSocketChannel
from companion_exec.config import AppConfig
from companion_exec.core.enums import BridgeMode

logger = logging.getLogger(__name__)


def create_bridge(config: AppConfig) -> HostBridge:
    """Return the HostBridge for the configured runtime mode."""
    mode = config.bridge.mode
    if mode == BridgeMode.DIRECT:
        logger.info("Using direct host bridge")
        return DirectBridge()
    if mode == BridgeMode.MESSAGE:
        logger.info("Using message host bridge via %s", config.bridge.socket_path)
        return MessageBridge(UnixSocketChannel(config.bridge.socket_path))
    raise ValueError(f"Unknown bridge mode: {mode}")
