"""
Momentum AI backend
"""
