"""Async gpsd position source with auto-reconnect and graceful degradation."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Optional

from ...domain.models import Fix
from .sources import EmitPolicy, SourceOptions, now_ms

logger = logging.getLogger(__name__)


@dataclass
class GPSConfig:
    """GPS daemon connection configuration."""

    host: str = "localhost"
    port: int = 2947
    reconnect_delay: float = 5.0
    timeout: float = 10.0
    max_reconnect_attempts: int = 0  # 0 = infinite


@dataclass
class GPSState:
    """Internal GPS state tracking."""

    connected: bool = False
    fix_count: int = 0
    error_count: int = 0
    last_fix_ms: Optional[int] = None


class AsyncGPSClient:
    """
    Async gpsd client yielding ``Fix`` values.

    Features:
    - Non-blocking async connection
    - Automatic reconnection on disconnect
    - Time/distance emission policy from ``SourceOptions``
    - Graceful degradation when GPS unavailable

    Usage:
        client = AsyncGPSClient()

        async for fix in client.stream_fixes(SourceOptions()):
            print(f"Lat: {fix.latitude}, Lon: {fix.longitude}")
    """

    def __init__(self, config: GPSConfig | None = None) -> None:
        self.config = config or GPSConfig()
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._running = False
        self._state = GPSState()
        self._reconnect_attempts = 0

    @property
    def is_connected(self) -> bool:
        """Check if connected to gpsd."""
        return self._state.connected

    @property
    def state(self) -> GPSState:
        """Get internal state for diagnostics."""
        return self._state

    async def connect(self) -> bool:
        """
        Connect to gpsd daemon.

        Returns:
            True if connected successfully, False otherwise.
        """
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.config.host, self.config.port),
                timeout=self.config.timeout,
            )

            # Enable JSON streaming mode
            self._writer.write(b'?WATCH={"enable":true,"json":true}\n')
            await self._writer.drain()

            self._state.connected = True
            self._reconnect_attempts = 0
            logger.info("Connected to gpsd at %s:%d", self.config.host, self.config.port)
            return True

        except asyncio.TimeoutError:
            logger.warning("GPS connection timeout to %s:%d", self.config.host, self.config.port)
            self._state.error_count += 1
            return False

        except OSError as e:
            logger.warning("GPS connection failed: %s - is gpsd running?", e)
            self._state.error_count += 1
            return False

    async def disconnect(self) -> None:
        """Disconnect from gpsd gracefully."""
        if self._writer:
            try:
                self._writer.write(b'?WATCH={"enable":false}\n')
                await self._writer.drain()
                self._writer.close()
                await self._writer.wait_closed()
            except OSError as e:
                logger.debug("GPS disconnect error: %s", e)

        self._reader = None
        self._writer = None
        self._state.connected = False

    async def stream_fixes(self, options: SourceOptions) -> AsyncIterator[Fix]:
        """
        Async generator that yields fixes passing the emission policy.

        Handles reconnection automatically. Never raises - logs errors and
        retries until stopped or max reconnect attempts is reached.
        """
        policy = EmitPolicy(options)
        self._running = True

        while self._running:
            if not self._reader:
                if not await self.connect():
                    self._reconnect_attempts += 1

                    if (
                        self.config.max_reconnect_attempts > 0
                        and self._reconnect_attempts >= self.config.max_reconnect_attempts
                    ):
                        logger.error("GPS max reconnect attempts reached, stopping")
                        break

                    await asyncio.sleep(self.config.reconnect_delay)
                    continue

            try:
                line = await asyncio.wait_for(
                    self._reader.readline(),  # type: ignore[union-attr]
                    timeout=self.config.timeout,
                )

                if not line:
                    raise ConnectionError("GPS connection closed by server")

                data = json.loads(line.decode("utf-8"))
                if not isinstance(data, dict):
                    logger.debug("GPS message is not an object, skipped")
                    continue

                # TPV = Time-Position-Velocity
                if data.get("class") == "TPV":
                    fix = self.parse_tpv(data)
                    if fix and policy.should_emit(fix):
                        self._state.fix_count += 1
                        self._state.last_fix_ms = fix.captured_at_ms
                        yield fix

            except asyncio.TimeoutError:
                logger.debug("GPS read timeout, connection still alive")

            except ValueError as e:
                # JSONDecodeError and UnicodeDecodeError
                logger.warning("GPS message parse error: %s", e)

            except (ConnectionError, OSError) as e:
                logger.warning("GPS stream error: %s, reconnecting...", e)
                self._state.error_count += 1
                await self.disconnect()
                await asyncio.sleep(self.config.reconnect_delay)

        await self.disconnect()

    @staticmethod
    def parse_tpv(data: dict) -> Optional[Fix]:
        """
        Parse TPV message from gpsd.

        Returns:
            Fix if a 2D/3D fix with lat/lon is present, None otherwise
        """
        if "lat" not in data or "lon" not in data:
            return None

        # Mode: 0=unknown, 1=no fix, 2=2D, 3=3D
        if data.get("mode", 0) < 2:
            return None

        try:
            captured = now_ms()
            if data.get("time"):
                captured = int(datetime.fromisoformat(data["time"]).timestamp() * 1000)
            return Fix(
                latitude=float(data["lat"]),
                longitude=float(data["lon"]),
                captured_at_ms=captured,
            )
        except (ValueError, TypeError) as e:
            logger.error("TPV parse error: %s - data: %s", e, data)
            return None

    async def stop(self) -> None:
        """Stop streaming and disconnect."""
        self._running = False
        await self.disconnect()
