class ReminderError(Exception):
    """Base class for reminder scheduling and alarm failures"""


class AuthorizationDenied(ReminderError):
    """The platform refused a privileged timer class or execution context"""


class ForegroundUnavailable(AuthorizationDenied):
    """The long-running alarm context could not be entered"""


class ResourceUnavailable(ReminderError):
    """An audio or vibration device could not be acquired"""
