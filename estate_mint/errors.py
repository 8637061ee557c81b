# estate_mint/errors.py
"""
Error taxonomy shared by every collaborator of the tokenization workflow.

Each class carries the HTTP status class it maps to, so the API layer never
has to know which collaborator raised it.
"""


class WorkflowError(Exception):
    """Base class for failures the workflow knows how to report."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputError(WorkflowError):
    """Malformed or missing caller input. Raised before any I/O."""

    status_code = 400


class NotFoundError(WorkflowError):
    status_code = 404


class UnknownChainError(NotFoundError):
    def __init__(self, name: str):
        super().__init__(f"chain '{name}' not found")
        self.name = name


class UnknownContractError(NotFoundError):
    def __init__(self, contract_type: str):
        super().__init__(f"contract type '{contract_type}' not found")
        self.contract_type = contract_type


class PropertyNotFoundError(NotFoundError):
    def __init__(self, property_id: str):
        super().__init__(f"property with ID '{property_id}' not found")
        self.property_id = property_id


class ListingNotFoundError(NotFoundError):
    def __init__(self, property_id: str, date: str = ""):
        if date:
            message = f"listing for property '{property_id}' and date '{date}' not found"
        else:
            message = f"no listings found for property '{property_id}'"
        super().__init__(message)
        self.property_id = property_id
        self.date = date


class ContentNotFoundError(NotFoundError):
    def __init__(self, content_id: str):
        super().__init__(f"content '{content_id}' not found")
        self.content_id = content_id


class DuplicateKeyError(WorkflowError):
    status_code = 409


class DependencyError(WorkflowError):
    """I/O failure of the pinning service, database or chain RPC."""

    status_code = 503


class DependencyTimeoutError(DependencyError):
    status_code = 504


class EncodingError(WorkflowError):
    """Arguments do not fit the ABI. Points at a deployment bug, not the caller."""

    status_code = 500


class SchemaError(EncodingError):
    """The ABI description itself could not be parsed."""
