"""Exception hierarchy for termbridge."""


class TermbridgeError(Exception):
    """Base for all termbridge exceptions."""


class ConfigurationError(TermbridgeError):
    """No execution target is configured where one is required."""


class SpawnError(TermbridgeError):
    def __init__(self, command: list[str], exc: Exception):
        super().__init__(f"Failed to start shell session ({' '.join(command)}): {exc}")
        self.command = command
        self.original_error = exc


class SessionNotFoundError(TermbridgeError):
    def __init__(self, key: str):
        super().__init__(f"No shell session found for key '{key}'")
        self.key = key
