"""
Tests for ABI call encoding and return-value decoding.
"""

import pytest

from nft_inventory.abi import (
    SELECTOR_BALANCE_OF,
    SELECTOR_GET_TOKEN_INFO,
    TOKEN_INFO_WORDS,
    address_topic,
    decode_held_page,
    decode_string,
    decode_token_info_array,
    decode_topic_uint,
    decode_uint,
    decode_uint_array,
    encode_address,
    encode_call,
    encode_uint,
    encode_uint_array_call,
)


OWNER = "0x" + "ab" * 20


# ============================================================
# ENCODING
# ============================================================

class TestEncoding:

    def test_encode_uint(self, word):
        assert encode_uint(255) == word(255)
        assert len(encode_uint(0)) == 64

    def test_encode_uint_negative(self):
        with pytest.raises(ValueError):
            encode_uint(-1)

    def test_encode_address_pads_and_lowercases(self):
        encoded = encode_address("0x" + "AB" * 20)
        assert encoded == "0" * 24 + "ab" * 20

    def test_encode_address_rejects_short(self):
        with pytest.raises(ValueError):
            encode_address("0x1234")

    def test_encode_call(self, word):
        data = encode_call(SELECTOR_BALANCE_OF, encode_address(OWNER))
        assert data == "0x70a08231" + "0" * 24 + "ab" * 20

    def test_encode_uint_array_call(self, word):
        data = encode_uint_array_call(SELECTOR_GET_TOKEN_INFO, [7, 9])
        assert data == "0x" + SELECTOR_GET_TOKEN_INFO + word(32) + word(2) + word(7) + word(9)

    def test_address_topic(self):
        assert address_topic(OWNER) == "0x" + "0" * 24 + "ab" * 20


# ============================================================
# SIMPLE DECODING
# ============================================================

class TestDecoding:

    def test_decode_uint(self, word):
        assert decode_uint("0x" + word(42)) == 42

    def test_decode_topic_uint(self, word):
        assert decode_topic_uint("0x" + word(1234)) == 1234

    def test_decode_string(self, word):
        text = "ipfs://cid/1.json"
        body = text.encode().hex()
        padded = body + "0" * (64 - len(body) % 64)
        assert decode_string("0x" + word(32) + word(len(text)) + padded) == text

    def test_decode_uint_array(self, word):
        data = "0x" + word(32) + word(3) + word(5) + word(6) + word(7)
        assert decode_uint_array(data) == [5, 6, 7]

    def test_unaligned_payload(self):
        with pytest.raises(ValueError):
            decode_uint("0x1234")

    def test_truncated_payload(self, word):
        # Declares three items, carries one
        with pytest.raises(ValueError):
            decode_uint_array("0x" + word(32) + word(3) + word(5))


# ============================================================
# getHeldNFTs
# ============================================================

class TestDecodeHeldPage:

    def test_bare_layout(self, word):
        data = (
            "0x" + word(128) + word(250) + word(2) + word(1)
            + word(2) + word(11) + word(12)
        )
        ids, total, returned, has_more = decode_held_page(data)
        assert ids == [11, 12]
        assert (total, returned, has_more) == (250, 2, True)

    def test_struct_layout(self, word):
        data = (
            "0x" + word(32)
            + word(128) + word(3) + word(3) + word(0)
            + word(3) + word(1) + word(2) + word(3)
        )
        ids, total, returned, has_more = decode_held_page(data)
        assert ids == [1, 2, 3]
        assert (total, returned, has_more) == (3, 3, False)

    def test_empty_page(self, word):
        data = "0x" + word(128) + word(0) + word(0) + word(0) + word(0)
        assert decode_held_page(data) == ([], 0, 0, False)


# ============================================================
# getTokenInfo
# ============================================================

def token_info_words(word, token_id, owner_int=0xAB, **flags):
    values = [0] * TOKEN_INFO_WORDS
    values[0] = token_id
    values[1] = owner_int
    values[2] = 1
    for position, name in (
        (3, "is_snake"), (4, "is_jailed"), (6, "is_egg"), (10, "owner_is_warden"),
    ):
        values[position] = int(flags.get(name, False))
    values[5] = flags.get("jail_time", 0)
    values[7] = flags.get("mint_time", 0)
    return "".join(word(v) for v in values)


class TestDecodeTokenInfo:

    def test_decodes_each_struct(self, word):
        data = (
            "0x" + word(32) + word(2)
            + token_info_words(word, 7, is_snake=True, mint_time=1700000000)
            + token_info_words(word, 9, is_jailed=True, jail_time=99, owner_is_warden=True)
        )
        first, second = decode_token_info_array(data, {7: "ipfs://cid/7"})

        assert first.token_id == 7
        assert first.is_snake and first.exists
        assert first.mint_time == 1700000000
        assert first.owner == "0x" + "0" * 38 + "ab"
        assert first.token_uri == "ipfs://cid/7"

        assert second.token_id == 9
        assert second.is_jailed and second.jail_time == 99
        assert second.owner_is_warden
        assert second.token_uri is None

    def test_empty_array(self, word):
        assert decode_token_info_array("0x" + word(32) + word(0)) == []

    def test_truncated_struct(self, word):
        data = "0x" + word(32) + word(1) + word(7) + word(1)
        with pytest.raises(ValueError):
            decode_token_info_array(data)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
