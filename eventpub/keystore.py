import logging
from typing import Dict, Tuple

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .errors import KeyMissing
from .models import PublicKey

logger = logging.getLogger(__name__)


def generate_key_pair() -> Tuple[str, str]:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


def key_id_for(actor_id: str) -> str:
    return f"{actor_id}#main-key"


def public_key_block(actor_id: str, public_key_pem: str) -> Dict[str, str]:
    return PublicKey(
        id=key_id_for(actor_id), owner=actor_id, publicKeyPem=public_key_pem
    ).model_dump()


class KeyStore:
    """
    Signing keys of local actors.

    Key pairs live on the actor record in the store; they are generated once
    when the actor is registered and never rotated, so a parsed private key
    can be kept for the life of the process.
    """

    def __init__(self, store):
        self.store = store
        self._private_keys: Dict[str, rsa.RSAPrivateKey] = {}

    async def _load(self, actor_id: str) -> rsa.RSAPrivateKey:
        key = self._private_keys.get(actor_id)
        if key is not None:
            return key
        record = await self.store.get_actor(actor_id)
        if record is None or not record.private_key_pem:
            logger.critical("No signing key stored for actor %s", actor_id)
            raise KeyMissing(f"No signing key for {actor_id}")
        key = serialization.load_pem_private_key(
            record.private_key_pem.encode(), password=None
        )
        self._private_keys[actor_id] = key
        return key

    async def ensure(self, actor_id: str) -> None:
        await self._load(actor_id)

    async def sign(self, actor_id: str, payload: bytes) -> bytes:
        key = await self._load(actor_id)
        return key.sign(payload, padding.PKCS1v15(), hashes.SHA256())

    async def public_key_document(self, actor_id: str) -> Dict[str, str]:
        record = await self.store.get_actor(actor_id)
        if record is None or not record.public_key_pem:
            logger.critical("No public key stored for actor %s", actor_id)
            raise KeyMissing(f"No public key for {actor_id}")
        return public_key_block(actor_id, record.public_key_pem)

    def forget(self, actor_id: str) -> None:
        self._private_keys.pop(actor_id, None)
