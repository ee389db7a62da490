from .event_store import BoundedEventStore, DashboardStats, PriceData, PricePoint, PriceUpdate
from .ring_buffer import RingBuffer, RollingCounter
from .sampler import DataSampler, SamplePoint

__all__ = [
    "BoundedEventStore",
    "DashboardStats",
    "DataSampler",
    "PriceData",
    "PricePoint",
    "PriceUpdate",
    "RingBuffer",
    "RollingCounter",
    "SamplePoint",
]
