"""
Core Layer - Orchestration.

This module provides:
    - MonitoringLoop: Runs the exit monitoring cycle in the background
    - MonitorConfig: Configuration for the loop

Data Flow:
    1. MonitoringLoop wakes up every interval
    2. TradingService.monitor_once() refreshes prices for held tokens
    3. Exit evaluator decides per position
    4. Triggered exits are sold one at a time
"""

from .background_tasks import MonitoringLoop, MonitorConfig

__all__ = [
    "MonitoringLoop",
    "MonitorConfig",
]
