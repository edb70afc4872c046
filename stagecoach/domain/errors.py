"""
Domain Errors

Architectural Intent:
- Single exception hierarchy for failures of the orchestration core itself
- Node-local failures are never raised; they are recorded as NodeResult data
- Everything here is fatal to a run and surfaces to the CLI as an internal error
"""


class StagecoachError(Exception):
    """Base class for all stagecoach control-logic failures."""


class PlanDefinitionError(StagecoachError):
    """The deployment plan is malformed (duplicate ids, bad dependencies, unknown checks)."""


class ConfigError(StagecoachError):
    pass


class PersistenceError(StagecoachError):
    """The state store could not be read or written."""


class StateCorruptionError(PersistenceError):
    """The persisted state is unparseable or inconsistent with the plan."""


class NodeSetMismatchError(StagecoachError):
    """The caller's node set differs from the node set recorded for the plan."""


class ResumeHintMismatchError(StagecoachError):
    """The operator's resume hint does not match the persisted resume point."""
