from enum import Enum


class WebSocketEvent(str, Enum):
    """WebSocket event names for real-time communication."""

    # Alert events
    ALERT = "alert"

    # Actuator events
    ACTUATOR_STATE_UPDATE = "actuator_state_update"

    # Telemetry events
    SENSOR_DATA = "sensor_data"

    # Automation events
    VPD_UPDATE = "vpd_update"
    AUTOMATION_STATUS = "automation_status"


class NotificationSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
