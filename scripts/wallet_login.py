# scripts/wallet_login.py
import os  # read environment variables
import argparse  # parse CLI args

import httpx  # talk to the API
from eth_account import Account  # local test wallet
from eth_account.messages import encode_defunct  # EIP-191 personal_sign framing


def main() -> None:  # main entrypoint
    parser = argparse.ArgumentParser(description="Log in to the API with a local private key")
    parser.add_argument("--base-url", default=os.environ.get("BASE_URL", "http://localhost:4000"))  # API root
    parser.add_argument("--private-key", default=os.environ.get("WALLET_PRIVATE_KEY"))  # signer key (hex)
    args = parser.parse_args()  # parse args

    if not args.private_key:  # a throwaway wallet is fine for the demo
        acct = Account.create()
        print(f"generated wallet {acct.address}")
    else:
        acct = Account.from_key(args.private_key)

    with httpx.Client(base_url=args.base_url, timeout=10.0) as client:  # one connection for both calls
        r = client.post("/auth/nonce", json={"address": acct.address})  # ask for a challenge
        r.raise_for_status()
        nonce = r.json()["nonce"]

        message = f"Login nonce: {nonce}"  # must match the server template exactly
        signed = Account.sign_message(encode_defunct(text=message), private_key=acct.key)  # sign it
        signature = "0x" + bytes(signed.signature).hex()

        r = client.post("/auth/verify", json={"address": acct.address, "signature": signature})  # prove ownership
        print(r.status_code, r.json())  # output result to stdout


if __name__ == "__main__":  # run as script
    main()  # call main
