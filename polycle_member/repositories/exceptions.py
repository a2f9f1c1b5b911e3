"""Custom exceptions for sheet-backed repositories."""


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class InvalidChannelError(RepositoryError):
    """The Slack channel for a daily report is missing or not the configured one."""
    pass


class EntityNotFoundError(RepositoryError):
    """Requested entity not found."""
    pass
