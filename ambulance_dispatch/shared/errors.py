"""Error taxonomy for the dispatch core."""


class DispatchError(Exception):
    """Base class for every error raised by the dispatch core."""

    status_code = 500


class NotFoundError(DispatchError):
    """Referenced ambulance, hospital or request does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} with ID {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(DispatchError):
    """A state transition was refused because of the entity's current status."""

    status_code = 409


class ValidationError(DispatchError):
    """A request-level precondition failed."""

    status_code = 400


class CollaboratorError(DispatchError):
    """An external collaborator (database, broker, cache) failed."""

    status_code = 503


class PersistenceError(CollaboratorError):
    pass


class TransportError(CollaboratorError):
    pass
