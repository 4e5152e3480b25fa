"""
Policy Store Errors

Raised by policy collaborators; the evaluator itself never raises.
"""


class PolicyStoreError(Exception):
    """Base class for policy store errors."""


class PolicyNotFoundError(PolicyStoreError):
    """The policy does not exist in the store."""

    def __init__(self, policy_id: str):
        super().__init__(f"Policy {policy_id} not found")
        self.policy_id = policy_id


class PolicyVersionConflictError(PolicyStoreError):
    """The policy was edited concurrently."""

    def __init__(self, policy_id: str, expected_version: int, actual_version: int):
        super().__init__(
            f"Policy {policy_id} is at version {actual_version}, expected {expected_version}"
        )
        self.policy_id = policy_id
        self.expected_version = expected_version
        self.actual_version = actual_version
