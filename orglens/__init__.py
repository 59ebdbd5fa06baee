"""
OrgLens - Natural Hierarchy Aggregation & Cross-Reference Resolution Engine
"""

__version__ = '0.1.0'
