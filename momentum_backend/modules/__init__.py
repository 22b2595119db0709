"""
Momentum AI feature modules
"""
