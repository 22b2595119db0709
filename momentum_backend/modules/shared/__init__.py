"""
Momentum AI - Shared Module
Firebase bootstrap, retry helper and response envelopes
"""
