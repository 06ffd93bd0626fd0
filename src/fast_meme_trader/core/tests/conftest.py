"""
Core layer test fixtures.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from fast_meme_trader.core import MonitorConfig
from fast_meme_trader.execution import PerformanceStats


@pytest.fixture
def mock_service():
    """Mock TradingService with nothing to sell."""
    service = MagicMock()
    service.monitor_once = AsyncMock(return_value=[])
    service.list_positions = AsyncMock(return_value=[])
    service.get_performance_stats = AsyncMock(return_value=PerformanceStats())
    return service


@pytest.fixture
def fast_config():
    """Short interval for fast tests."""
    return MonitorConfig(interval_seconds=0.01, status_every_cycles=0)
