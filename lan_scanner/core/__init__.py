"""
Core components of the scanning engine.
"""

from .data_models import (
    ProbeKind,
    ScanStatus,
    ScanStrategy,
    ScanPriority,
    NetworkQuality,
    ScanTarget,
    ProbeResult,
    ProbeConfig,
    ScanTask,
    PerformanceSample,
    ScanReport
)
from .concurrency import FifoSemaphore
from .scan_queue import TaskPriorityQueue, classify_priority
from .performance import PerformanceTracker, Recommendation
from .device_classifier import DeviceClassifier, ClassificationRule

__all__ = [
    'ProbeKind',
    'ScanStatus',
    'ScanStrategy',
    'ScanPriority',
    'NetworkQuality',
    'ScanTarget',
    'ProbeResult',
    'ProbeConfig',
    'ScanTask',
    'PerformanceSample',
    'ScanReport',
    'FifoSemaphore',
    'TaskPriorityQueue',
    'classify_priority',
    'PerformanceTracker',
    'Recommendation',
    'DeviceClassifier',
    'ClassificationRule'
]
