"""Generate a wallet key file for signing ledger writes."""
import sys

from xraycryst.config import WALLET_PATH
from xraycryst.wallet import generate_wallet


def main(path):
    signer = generate_wallet(path)
    print(f"Generated wallet {signer.address} -> {path}")


if __name__ == "__main__":
    if len(sys.argv) > 2:
        print("Usage: python tools/gen_wallet.py [<wallet.json>]")
        raise SystemExit(2)
    main(sys.argv[1] if len(sys.argv) == 2 else WALLET_PATH)
