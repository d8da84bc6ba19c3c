"""Remote configuration step."""

from .ansible import AnsibleApplier

__all__ = ["AnsibleApplier"]
