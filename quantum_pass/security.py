import secrets
from datetime import datetime, timedelta, timezone

from eth_account import Account
from eth_account.messages import encode_defunct
from jose import jwt
from jose.exceptions import JWTError

LOGIN_MESSAGE = "Login nonce: {nonce}"


def challenge_message(nonce: str) -> str:
    """The exact text the wallet signs; must match the client byte for byte."""
    return LOGIN_MESSAGE.format(nonce=nonce)


def recover_signer(message: str, signature: str) -> str:
    """Recover the checksummed address that personal_sign'ed ``message``.

    Raises whatever eth-account raises for malformed signatures.
    """
    return Account.recover_message(encode_defunct(text=message), signature=signature)


def mint_session_token(address: str, secret: str, ttl_minutes: int = 60) -> str:
    exp = int((datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes)).timestamp())
    payload = {
        "sub": address.lower(),
        "nonce": secrets.token_hex(8),
        "exp": exp,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_session_token(token: str, secret: str) -> dict:
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"], options={"verify_exp": False})
    except JWTError:
        raise ValueError("INVALID_TOKEN")

    now = datetime.now(timezone.utc).timestamp()
    exp = payload.get("exp")
    if exp is None or now > float(exp):
        raise ValueError("EXPIRED")

    for k in ["sub", "nonce"]:
        if k not in payload:
            raise ValueError("INVALID_TOKEN")

    return payload
