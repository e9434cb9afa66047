class ShellyDashError(Exception):
    """Base class for every error raised by the dashboard core."""


class MalformedMessage(ShellyDashError):
    def __init__(self, topic: str, reason: str):
        super().__init__(f"malformed message on {topic}: {reason}")
        self.topic = topic
        self.reason = reason


class UnknownDeviceType(ShellyDashError):
    def __init__(self, device_type: str):
        super().__init__(f"Unknown device type: {device_type}")
        self.device_type = device_type


class UnknownDevice(ShellyDashError):
    def __init__(self, device_id: str):
        super().__init__(f"Device not found: {device_id}")
        self.device_id = device_id


class DuplicateDevice(ShellyDashError):
    def __init__(self, device_id: str):
        super().__init__(f"Device already exists: {device_id}")
        self.device_id = device_id


class UnsupportedCommand(ShellyDashError):
    def __init__(self, device_id: str, command: str):
        super().__init__(f"Device {device_id} does not support command {command!r}")
        self.device_id = device_id
        self.command = command


class CommandFailed(ShellyDashError):
    """Command was supported but could not be carried out (bad params, RPC error, timeout)."""


class StorageUnavailable(ShellyDashError):
    pass


class BusDisconnected(ShellyDashError):
    pass
