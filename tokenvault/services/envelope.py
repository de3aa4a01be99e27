"""Sign-then-encrypt token envelope.

A token is a compact JWS over the claim set (RS256, PyJWT) wrapped in a
compact JWE (RSA-OAEP-256 + A256GCM, jwcrypto) encrypted to the same key
pair. Both layers carry the pair's ``kid``; the outer JWE header is the only
part readable without the private key.

Opening runs in the reverse order: ``read_header`` -> ``open_sealed``
(decrypt) -> ``verify_signed`` (signature). Each stage raises the matching
``TokenRejectedError`` and never lets a library exception through.
"""

from typing import Any

import jwt
from jwcrypto import jwe, jwk
from jwcrypto.common import JWException, json_encode

from tokenvault.services.domain import KeyMaterial
from tokenvault.services.errors import (
    ClaimInvalidError,
    DecryptionFailedError,
    MalformedTokenError,
    SignatureInvalidError,
    TokenIssuanceError,
)

SIGNING_ALGORITHM = "RS256"
KEY_ENCRYPTION_ALGORITHM = "RSA-OAEP-256"
CONTENT_ENCRYPTION_ALGORITHM = "A256GCM"

# Claim checks are done by the verifier against its own clock
_SIGNATURE_ONLY = {
    "verify_signature": True,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
}


def sign_claims(claims: dict[str, Any], key: KeyMaterial) -> str:
    """Sign a claim set with the pair's private key."""
    try:
        return jwt.encode(
            claims,
            key.private_key,
            algorithm=SIGNING_ALGORITHM,
            headers={"kid": key.kid, "typ": "JWT"},
        )
    except (jwt.PyJWTError, ValueError, TypeError) as e:
        raise TokenIssuanceError(f"Signing failed: {e}") from e


def seal(signed: str, key: KeyMaterial) -> str:
    """Encrypt a signed token to the pair's public key."""
    protected = {
        "alg": KEY_ENCRYPTION_ALGORITHM,
        "enc": CONTENT_ENCRYPTION_ALGORITHM,
        "cty": "JWT",
        "typ": "JWE",
        "kid": key.kid,
    }
    try:
        envelope = jwe.JWE(signed.encode("utf-8"), protected=json_encode(protected))
        envelope.add_recipient(jwk.JWK.from_pyca(key.public_key))
        return envelope.serialize(compact=True)
    except (JWException, ValueError, TypeError) as e:
        raise TokenIssuanceError(f"Encryption failed: {e}") from e


def read_header(token: str) -> dict[str, Any]:
    """Parse the unencrypted outer header and require a kid.

    Rejects any algorithm other than the pinned pair before a key is touched.
    """
    if not isinstance(token, str) or token.count(".") != 4:
        raise MalformedTokenError("Token is not a compact JWE")

    envelope = jwe.JWE()
    try:
        envelope.deserialize(token)
        header = envelope.jose_header
    except (JWException, ValueError, TypeError) as e:
        raise MalformedTokenError(f"Unparseable envelope header: {e}") from e

    kid = header.get("kid")
    if not isinstance(kid, str) or not kid:
        raise MalformedTokenError("Envelope header has no kid")
    if header.get("alg") != KEY_ENCRYPTION_ALGORITHM:
        raise ClaimInvalidError(f"Unexpected key encryption algorithm {header.get('alg')!r}", claim="alg")
    if header.get("enc") != CONTENT_ENCRYPTION_ALGORITHM:
        raise ClaimInvalidError(f"Unexpected content encryption {header.get('enc')!r}", claim="enc")
    return header


def open_sealed(token: str, key: KeyMaterial) -> str:
    """Decrypt the envelope and return the inner signed token."""
    envelope = jwe.JWE(algs=[KEY_ENCRYPTION_ALGORITHM, CONTENT_ENCRYPTION_ALGORITHM])
    try:
        envelope.deserialize(token, key=jwk.JWK.from_pyca(key.private_key))
    except (JWException, ValueError, TypeError) as e:
        raise DecryptionFailedError(f"Envelope decryption failed: {e}") from e

    try:
        return envelope.payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedTokenError("Envelope payload is not text") from e


def verify_signed(signed: str, key: KeyMaterial) -> dict[str, Any]:
    """Verify the inner signature and return the unvalidated claim set.

    Pins the algorithm and requires the inner kid to match the envelope's.
    """
    try:
        header = jwt.get_unverified_header(signed)
    except jwt.DecodeError as e:
        raise MalformedTokenError(f"Unparseable signed token: {e}") from e

    if header.get("alg") != SIGNING_ALGORITHM:
        raise ClaimInvalidError(f"Unexpected signature algorithm {header.get('alg')!r}", claim="alg")
    if header.get("kid") != key.kid:
        raise ClaimInvalidError("Signed token kid does not match envelope", claim="kid")

    try:
        claims = jwt.decode(
            signed,
            key.public_key,
            algorithms=[SIGNING_ALGORITHM],
            options=_SIGNATURE_ONLY,
        )
    except jwt.InvalidSignatureError as e:
        raise SignatureInvalidError("Signature verification failed") from e
    except jwt.InvalidAlgorithmError as e:
        raise ClaimInvalidError(str(e), claim="alg") from e
    except jwt.DecodeError as e:
        raise MalformedTokenError(f"Unparseable signed token: {e}") from e
    except jwt.InvalidTokenError as e:
        raise ClaimInvalidError(f"Invalid claim: {e}") from e

    if not isinstance(claims, dict):
        raise MalformedTokenError("Claim set is not an object")
    return claims
