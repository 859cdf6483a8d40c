"""
SignalScope Core Module

Contains the diagnostic signals subsystem:
- Collector contract and the bundled Linux collectors
- Concurrent orchestration with per-collector timeouts and bounded retry
- Central sanitization of sentinel and implausible values
- Data reliability scoring, kept separate from machine health
"""

__version__ = '1.0.0'
