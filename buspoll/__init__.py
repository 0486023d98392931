"""
Buspoll - Device Property Polling

Services:
- Binding Service - Scheduled device reads, state caching, commands
"""

__version__ = "1.0.0"
