"""
Control Loops Package
=====================

Closed-loop VPD fan control.

Architecture:
    SensorSample
         │
         ▼
    ┌─────────────────────────────────┐
    │      VPDControlLoop             │  ← interval, hysteresis, emergency thresholds
    │  ┌───────────────────────────┐  │
    │  │   next_fan_speed()        │  │  ← dead zone + proportional steps per aggressiveness
    │  └───────────────────────────┘  │
    └─────────────────────────────────┘
         │                    │
         ▼                    ▼
    ConfigStore          ActuatorDispatcher
"""

from app.control_loops.fan_speed import FanProfile, fan_profile, next_fan_speed
from app.control_loops.vpd_control_loop import VPDControlLoop, VPDTickResult

__all__ = [
    "FanProfile",
    "VPDControlLoop",
    "VPDTickResult",
    "fan_profile",
    "next_fan_speed",
]
