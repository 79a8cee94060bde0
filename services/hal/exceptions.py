"""
Instrument Driver Errors

Instrument faults (motor step loss, transport jam, ...) are reported in-band
through InstrumentState.status/last_error and are not exceptions. The classes
below cover failures of the calling API itself.
"""


class InstrumentDriverError(Exception):
    """Base class for driver-layer failures"""
    pass


class DriverConnectionError(InstrumentDriverError, ConnectionError):
    """Raised when a driver cannot complete its handshake"""

    def __init__(self, driver_id: str, message: str):
        self.driver_id = driver_id
        super().__init__(f"{driver_id}: {message}")


class CommandRejectedError(InstrumentDriverError):
    """Raised when a driver refuses a command it does not recognise"""

    def __init__(self, driver_id: str, command: str):
        self.driver_id = driver_id
        self.command = command
        super().__init__(f"{driver_id}: command '{command}' not supported")


class AssistanceUnavailableError(Exception):
    """Raised when the text-generation collaborator is unreachable or unconfigured"""
    pass
