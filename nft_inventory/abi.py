"""
Minimal ABI encoding/decoding for the handful of view calls we make.

Selectors are precomputed keccak256 prefixes of the function signatures.
Only the static layouts these calls use are supported: address, uint256,
bool, uint256[], string, and arrays of fixed-size tuples.
"""

from typing import Optional

from nft_inventory.models import RawAttributes


WORD_HEX = 64

# keccak256(signature)[:4]
SELECTOR_TOKEN_URI = "c87b56dd"                # tokenURI(uint256)
SELECTOR_BALANCE_OF = "70a08231"               # balanceOf(address)
SELECTOR_TOKEN_OF_OWNER_BY_INDEX = "2f745c59"  # tokenOfOwnerByIndex(address,uint256)
SELECTOR_GET_HELD_NFTS = "120f452e"            # getHeldNFTs(address,uint256,uint256)
SELECTOR_GET_TOKEN_INFO = "b346cbfc"           # getTokenInfo(uint256[])

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

# Words per TokenInfo struct returned by getTokenInfo
TOKEN_INFO_WORDS = 14


# ─────────────────────────────────────────────────────────────
# Encoding
# ─────────────────────────────────────────────────────────────

def encode_uint(value: int) -> str:
    """Encode a uint256 as one 32-byte word (hex, no prefix)."""
    if value < 0:
        raise ValueError("uint256 cannot be negative")
    return format(value, "x").zfill(WORD_HEX)


def encode_address(address: str) -> str:
    """Encode an address as one left-padded word."""
    body = address[2:] if address.startswith("0x") else address
    if len(body) != 40:
        raise ValueError(f"Invalid address: {address}")
    return body.lower().zfill(WORD_HEX)


def encode_call(selector: str, *words: str) -> str:
    """Concatenate a selector with already-encoded static words."""
    return "0x" + selector + "".join(words)


def encode_uint_array_call(selector: str, values: list[int]) -> str:
    """Encode a call whose only argument is a uint256[]."""
    head = encode_uint(32)
    body = encode_uint(len(values)) + "".join(encode_uint(v) for v in values)
    return "0x" + selector + head + body


def address_topic(address: str) -> str:
    """Indexed address as a log topic."""
    return "0x" + encode_address(address)


# ─────────────────────────────────────────────────────────────
# Decoding
# ─────────────────────────────────────────────────────────────

def _strip(hex_data: str) -> str:
    data = hex_data[2:] if hex_data.startswith("0x") else hex_data
    if len(data) % WORD_HEX != 0:
        raise ValueError("ABI payload is not word aligned")
    return data


def _word(data: str, index: int) -> int:
    start = index * WORD_HEX
    chunk = data[start:start + WORD_HEX]
    if len(chunk) != WORD_HEX:
        raise ValueError("ABI payload truncated")
    return int(chunk, 16)


def _word_at_byte(data: str, byte_offset: int) -> int:
    if byte_offset % 32 != 0:
        raise ValueError("Unaligned ABI offset")
    return _word(data, byte_offset // 32)


def decode_uint(hex_data: str) -> int:
    """Decode a single uint256 return value."""
    return _word(_strip(hex_data), 0)


def decode_address_word(value: int) -> str:
    return "0x" + format(value, "x").zfill(40)[-40:]


def decode_string(hex_data: str) -> str:
    """Decode an ABI-encoded string return value."""
    data = _strip(hex_data)
    offset = _word(data, 0)
    length = _word_at_byte(data, offset)
    start = (offset + 32) * 2
    raw = data[start:start + length * 2]
    if len(raw) != length * 2:
        raise ValueError("ABI string truncated")
    return bytes.fromhex(raw).decode("utf-8")


def _decode_uint_array_at(data: str, byte_offset: int) -> list[int]:
    length = _word_at_byte(data, byte_offset)
    first = byte_offset // 32 + 1
    return [_word(data, first + i) for i in range(length)]


def decode_uint_array(hex_data: str) -> list[int]:
    """Decode a uint256[] return value."""
    data = _strip(hex_data)
    return _decode_uint_array_at(data, _word(data, 0))


def decode_held_page(hex_data: str) -> tuple[list[int], int, int, bool]:
    """
    Decode getHeldNFTs output: (uint256[] tokenIds, totalHeld, returned, hasMore).

    Accepts both the bare multi-value layout and the layout where the four
    values are wrapped in a single returned struct.
    """
    data = _strip(hex_data)
    first = _word(data, 0)
    # A struct return starts with a pointer to the struct itself; the bare
    # layout's first word points past a four-word head.
    base = 32 if first == 32 else 0
    base_word = base // 32
    ids_offset = _word(data, base_word)
    total_held = _word(data, base_word + 1)
    returned = _word(data, base_word + 2)
    has_more = bool(_word(data, base_word + 3))
    token_ids = _decode_uint_array_at(data, base + ids_offset)
    return token_ids, total_held, returned, has_more


def decode_token_info_array(
    hex_data: str,
    token_uris: Optional[dict[int, str]] = None,
) -> list[RawAttributes]:
    """Decode getTokenInfo(uint256[]) output into RawAttributes."""
    data = _strip(hex_data)
    offset = _word(data, 0)
    count = _word_at_byte(data, offset)
    token_uris = token_uris or {}

    results: list[RawAttributes] = []
    first = offset // 32 + 1
    for i in range(count):
        w = [_word(data, first + i * TOKEN_INFO_WORDS + j) for j in range(TOKEN_INFO_WORDS)]
        token_id = w[0]
        results.append(RawAttributes(
            token_id=token_id,
            owner=decode_address_word(w[1]),
            exists=bool(w[2]),
            is_snake=bool(w[3]),
            is_jailed=bool(w[4]),
            jail_time=w[5],
            is_egg=bool(w[6]),
            mint_time=w[7],
            force_hatched=bool(w[8]),
            evolved=bool(w[9]),
            owner_is_warden=bool(w[10]),
            owner_is_jail_exempt=bool(w[11]),
            swap_mint_time=w[12],
            can_unwrap=bool(w[13]),
            token_uri=token_uris.get(token_id),
        ))
    return results


def decode_topic_uint(topic: str) -> int:
    """Decode an indexed uint256 log topic."""
    return decode_uint(topic)
