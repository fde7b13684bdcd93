"""
Service-layer exceptions.

Each carries operator-facing text; routers translate them to HTTP responses
via the handlers registered in nightly_stats.main.
"""


class StoreConnectionError(Exception):
    """Raised when the result store cannot be reached."""
    pass


class StoreAuthenticationError(Exception):
    """Raised when the result store rejects the configured credentials."""
    pass


class JenkinsConnectionError(Exception):
    """Raised when Jenkins cannot be reached or times out."""
    pass


class JenkinsAuthenticationError(Exception):
    """Raised when Jenkins rejects the operator's credentials."""
    pass


class TestNotFoundError(Exception):
    """Raised when a result record id does not exist."""
    __test__ = False  # Not a pytest test class

    def __init__(self, test_id: int):
        self.test_id = test_id
        super().__init__(f"Test {test_id} not found")
