"""Admission control: per-caller concurrency, global ceiling and rate limits."""

from .controller import AdmissionController, AdmissionTicket, Rejection, RejectReason
from .rate import RateStrategy, SlidingWindow, TokenBucket, make_strategy

__all__ = [
    "AdmissionController", "AdmissionTicket", "Rejection", "RejectReason",
    "RateStrategy", "SlidingWindow", "TokenBucket", "make_strategy",
]
