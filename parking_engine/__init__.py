"""Parking spot allocation and live cost-accrual service."""

__version__ = "1.0.0"
