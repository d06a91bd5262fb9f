"""
Error taxonomy shared by the catalog, detection and plugin layers.
"""


class AgentManagerError(Exception):
    """Base class for all agentmgr errors."""
    pass


class ConfigError(AgentManagerError, ValueError):
    """Raised when plugin, catalog or configuration input is malformed."""
    pass


class NotFoundError(AgentManagerError, LookupError):
    """Raised when an agent, method, catalog or strategy cannot be found."""
    pass


class UnsupportedChangelogError(NotFoundError):
    """Raised when an agent's changelog source type has no handler."""

    def __init__(self, source_type: str):
        super().__init__(f"unsupported changelog type: {source_type or '<empty>'}")
        self.source_type = source_type


class TransportError(AgentManagerError):
    """Raised when a remote catalog or changelog source cannot be reached."""
    pass


class ParseError(AgentManagerError):
    """Raised when a document cannot be parsed."""
    pass


class ExecutionError(AgentManagerError):
    """Raised when an external probe process fails or emits malformed output."""
    pass
