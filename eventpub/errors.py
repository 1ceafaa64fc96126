class FederationError(Exception):
    status_code = 500

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.__class__.__name__)
        self.detail = detail or self.__class__.__name__


class MissingSignature(FederationError):
    status_code = 401


class MalformedSignature(FederationError):
    status_code = 401


class ActorUnreachable(FederationError):
    status_code = 500


class SignatureInvalid(FederationError):
    status_code = 401


class UnprocessableActivity(FederationError):
    status_code = 422


class DeliveryFailed(FederationError):
    status_code = 502


# Raised when an actor has no stored key pair. Never transient.
class KeyMissing(FederationError):
    status_code = 500
