"""
AWS Billing Monitor

Tracks AWS Cost Explorer spend across multiple accounts: month-to-date cost,
last month, forecast, per-service breakdown and six months of history.
"""

__version__ = "1.0.0"
__author__ = "Cost Monitor Team"
