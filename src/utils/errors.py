"""
Domain errors raised by the integration core.
The API layer maps them to HTTP responses; services never raise HTTPException.
"""


class IntegrationError(Exception):
    """Base class for integration core failures."""
    pass


class LedgerInconsistencyError(IntegrationError):
    """
    The ledger unique constraint fired but no committed ticket could be found
    for the key. Retryable by the caller.
    """

    def __init__(self, client_id, source: str, external_id: str):
        self.client_id = client_id
        self.source = source
        self.external_id = external_id
        super().__init__(
            f"Ledger conflict without ticket for client={client_id} "
            f"source={source} external_id={external_id}"
        )


class DuplicateClientError(IntegrationError):
    """An integration client with this name already exists."""
    pass


class SecretUnavailableError(IntegrationError):
    """A stored webhook secret is encrypted and cannot be opened with the configured keys."""
    pass
