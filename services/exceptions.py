"""
Exceptions raised inside the segment and campaign pipeline.

API-facing service methods translate these into ``Result.failure`` codes;
background jobs let them propagate so Celery can log or retry.
"""


class CampaignEngineError(Exception):
    """Base class for pipeline errors"""
    code = 'ERROR'


class NotFoundError(CampaignEngineError):
    """A segment, campaign, execution or contact does not exist for the tenant"""
    code = 'NOT_FOUND'

    def __init__(self, entity: str, entity_id=None):
        self.entity = entity
        self.entity_id = entity_id
        message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(message)


class InvalidStateError(CampaignEngineError):
    """The requested transition is not allowed from the current state"""
    code = 'INVALID_STATE'


class DeliveryError(CampaignEngineError):
    """
    A single recipient could not be delivered to.

    The message is recorded verbatim on the execution record.
    """
    code = 'DELIVERY_FAILED'


class RuleParseError(CampaignEngineError, ValueError):
    """A stored or submitted rule tree is structurally malformed"""
    code = 'VALIDATION_ERROR'
