"""Error taxonomy for the Forge execution engine.

Every structural or validation failure raised by the engine derives from
``ForgeError``. Messages are plain, user-facing strings; callers are expected to
surface ``str(err)`` as-is.

Check-level failures (non-zero exit codes, timeouts, a failed commit step) are
never raised. They are encoded as ``PhaseCheckResult`` entries instead.
"""


class ForgeError(Exception):
    """Base class for Forge execution errors."""

    pass


class InvalidIdentifier(ForgeError):
    """Plan, task or phase identifier is missing or malformed."""

    pass


class NoTemplateInstalled(ForgeError):
    """Workspace has no template lock record."""

    pass


class TemplateMissing(ForgeError):
    """Installed template directory does not exist on disk."""

    pass


class UnsafePath(ForgeError):
    """Template entrypoint is absolute or escapes the template root."""

    pass


class UnsupportedSchema(ForgeError):
    """Document schema tag is not the one this engine understands."""

    pass


class PlanIdMismatch(ForgeError):
    """plan.json id differs from the requested plan id."""

    pass


class StateIdMismatch(ForgeError):
    """state.json plan_id differs from the requested plan id."""

    pass


class InvalidJson(ForgeError):
    """Document could not be parsed or has the wrong shape."""

    pass


class MissingFile(ForgeError):
    """A required plan, state or generated file is absent."""

    pass


class UnknownTask(ForgeError):
    """Task id is not present in the plan or state."""

    pass


class UnknownPhase(ForgeError):
    """Phase id is not present in the task state."""

    pass


class HookError(ForgeError):
    """Template hook invocation error."""

    pass


class HookFailed(HookError):
    """Hook exited with a non-zero status."""

    pass


class HookTimedOut(HookError):
    """Hook did not finish before its timeout."""

    pass


class HookSpawnFailed(HookError):
    """Hook process could not be started."""

    pass


class GitError(ForgeError):
    """Git operation error."""

    pass


class GitCommandFailed(GitError):
    """Git exited with a non-zero status or could not be started."""

    pass


class GitTimedOut(GitError):
    """Git did not finish before its timeout."""

    pass
