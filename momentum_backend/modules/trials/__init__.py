"""
Momentum AI - Trials Module
Per-IP account limits and trial period checks
"""
from .trial_validation import (
    check_trial_eligibility,
    validate_trial_period,
    requires_valid_trial,
    add_account_to_ip_tracking,
)

__all__ = [
    'check_trial_eligibility',
    'validate_trial_period',
    'requires_valid_trial',
    'add_account_to_ip_tracking',
]
