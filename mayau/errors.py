"""Error taxonomy shared by the stores, registries and the UI."""


class MayauError(Exception):
    """Base class for every failure surfaced to the user as a banner."""

    def user_message(self):
        return str(self)


class AuthError(MayauError):
    """Sign-in or sign-out failed."""


class ValidationError(MayauError):
    """Input or document shape rejected before reaching the backend."""


class InvalidCredentials(AuthError, ValidationError):
    """The master username/password pair did not match."""

    def __init__(self, message="Invalid master username or password."):
        super().__init__(message)


class EmptyMessage(ValidationError):
    def __init__(self, message="Message text cannot be empty."):
        super().__init__(message)


class NotFound(MayauError):
    """A referenced workspace, task or profile no longer exists."""


PERMISSION_HINT = (
    "Your account may still be waiting for approval by the master account, "
    "or you are not a member of this workspace. Ask the master account to "
    "approve you or add you to the team, then try again."
)


class PermissionDenied(MayauError):
    """The backend (or the approval gate) refused the write."""

    def __init__(self, message="Permission denied.", hint=PERMISSION_HINT):
        super().__init__(message)
        self.hint = hint

    def user_message(self):
        if self.hint:
            return f"{self} {self.hint}"
        return str(self)


class InvalidTransition(MayauError):
    """Raised when the approval gate is asked for a transition it does not have."""

    def __init__(self, from_state, event):
        self.from_state = from_state
        self.event = event
        super().__init__(f"Invalid transition: {from_state} on {event}")
