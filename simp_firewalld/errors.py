"""
Custom exception types for rule compilation and firewalld application.
"""

from typing import Optional


class RuleCompileError(Exception):
    """
    Base class for failures while turning a declared rule into resources.
    No resource of the failing rule is ever emitted once this is raised.
    """
    default_message = "Failed to compile rule"

    def __init__(self, title: Optional[str] = None, token: Optional[str] = None,
                 detail: Optional[str] = None, message: Optional[str] = None):
        self.title = title
        self.token = token
        self.detail = detail
        full = message or self.default_message
        if title is not None:
            full = f"{full} for rule '{title}'"
        if detail:
            full = f"{full}: {detail}"
        super().__init__(full)

    def with_title(self, title: str) -> "RuleCompileError":
        """Return a copy of this error that names the rule it came from."""
        return type(self)(title=title, token=self.token, detail=self.detail)


class InvalidAddress(RuleCompileError):
    """Raised when a trusted network token is not a valid IP, CIDR or hostname."""
    default_message = "Invalid address"


class InvalidRuleSpec(RuleCompileError):
    """Raised when rule parameters are inconsistent or out of range."""
    default_message = "Invalid rule specification"


class FirewallCommandError(Exception):
    """
    Raised when a firewall-cmd invocation fails while applying a catalog.
    """
    def __init__(self, args, message: str = "firewall-cmd failed", detail: Optional[str] = None):
        self.args_list = list(args)
        self.detail = detail
        full = f"{message}: {' '.join(self.args_list)}"
        if detail:
            full = f"{full}: {detail}"
        super().__init__(full)


__all__ = ["RuleCompileError", "InvalidAddress", "InvalidRuleSpec", "FirewallCommandError"]
