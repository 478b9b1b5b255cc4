"""
Quiz flow graph and live funnel analytics.
"""

__version__ = "0.1.0"
