from .errors import (
    FederationError,
    MissingSignature,
    MalformedSignature,
    ActorUnreachable,
    SignatureInvalid,
    UnprocessableActivity,
    DeliveryFailed,
    KeyMissing,
)
from .config import Settings
from .keystore import KeyStore, generate_key_pair
from .negotiation import wants_federated_representation
from .verifier import InboxVerifier, VerifiedRequest
from .inbox import InboxProcessor
from .broadcast import Broadcaster, DeliveryReport, DeliveryAttempt
from .service import FederationService, create_federation
from .store import MemoryStore, MotorStore, connect_store

__all__ = [
    "FederationError",
    "MissingSignature",
    "MalformedSignature",
    "ActorUnreachable",
    "SignatureInvalid",
    "UnprocessableActivity",
    "DeliveryFailed",
    "KeyMissing",
    "Settings",
    "KeyStore",
    "generate_key_pair",
    "wants_federated_representation",
    "InboxVerifier",
    "VerifiedRequest",
    "InboxProcessor",
    "Broadcaster",
    "DeliveryReport",
    "DeliveryAttempt",
    "FederationService",
    "create_federation",
    "MemoryStore",
    "MotorStore",
    "connect_store",
]

__version__ = "0.1.0"
