"""
Trust Radar — behavioral signal detection and trust/risk scoring.
"""

__version__ = "0.1.0"
