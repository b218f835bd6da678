import re

import bech32

_HEX_PUBKEY = re.compile(r"^[0-9a-fA-F]{64}$")


def convert_npub_to_hex(pubkey: str) -> str:
    """Return the server public key as lowercase hex.

    Operators may set ``server.pubkey`` either as a bech32 ``npub`` or as 64
    hex characters. Anything else raises ValueError.
    """
    if _HEX_PUBKEY.match(pubkey):
        return pubkey.lower()
    if not pubkey.startswith("npub1"):
        raise ValueError("expected an npub or a 64-character hex public key")

    hrp, data = bech32.bech32_decode(pubkey)
    if hrp != "npub" or data is None:
        raise ValueError("npub has an invalid bech32 encoding or checksum")
    decoded = bech32.convertbits(data, 5, 8, False)
    if decoded is None or len(decoded) != 32:
        raise ValueError("npub does not decode to a 32-byte key")
    return bytes(decoded).hex()
