"""
Core modules for Agent Analytics.

This package contains session reconstruction, the metrics overview and
time series engines, the result cache and the service facade.
"""
