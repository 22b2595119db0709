"""
Momentum AI - Core Module
Logging setup shared by the whole application
"""
from .logging_init import init_safe_logging, init_request_logging

__all__ = ['init_safe_logging', 'init_request_logging']
