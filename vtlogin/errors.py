class SessionError(Exception):
    "Base for failures of a session attempt"


class StartupError(SessionError):
    "Carrier failed to start or reach readiness, or the session process failed to launch"


class RuntimeExitError(SessionError):
    "Session process exited with error while not interrupted"


class CarrierExitError(SessionError):
    "Carrier reported failure during its own teardown"


class AccountingError(SessionError):
    "Accounting entry could not be added or removed, never escalated"
