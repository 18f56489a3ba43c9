"""
编码生成器测试
"""
import re

import pytest

from sf_core.services.code_generator import (
    GIFT_CARD_ALPHABET,
    generate_unique,
    new_gift_card_code,
    new_order_number,
    new_redemption_token,
    to_base36,
)
from sf_core.utils.errors import ExhaustedRetriesError


def test_to_base36():
    assert to_base36(0) == "0"
    assert to_base36(35) == "Z"
    assert to_base36(36) == "10"
    with pytest.raises(ValueError):
        to_base36(-1)


def test_order_number_format():
    number = new_order_number("MF", now_ms=1700000000000)
    assert re.fullmatch(r"MF-[0-9A-Z]+-[0-9A-Z]{4}", number)
    assert number.split("-")[1] == to_base36(1700000000000)


def test_gift_card_code_excludes_ambiguous_characters():
    for _ in range(200):
        code = new_gift_card_code(14)
        assert len(code) == 14
        assert set(code) <= set(GIFT_CARD_ALPHABET)
        assert not set(code) & {"0", "O", "1", "I"}


def test_redemption_tokens_are_distinct():
    tokens = {new_redemption_token() for _ in range(100)}
    assert len(tokens) == 100


async def test_generate_unique_retries_until_free():
    candidates = iter(["AAA", "BBB", "CCC"])
    taken = {"AAA", "BBB"}

    async def is_taken(code):
        return code in taken

    assert await generate_unique(lambda: next(candidates), is_taken, max_attempts=5) == "CCC"


async def test_generate_unique_exhausted():
    calls = []

    async def always_taken(code):
        calls.append(code)
        return True

    with pytest.raises(ExhaustedRetriesError) as exc_info:
        await generate_unique(lambda: "SAME", always_taken, max_attempts=4, kind="gift_card_code")

    assert len(calls) == 4
    assert exc_info.value.code == "CODE_GENERATION_EXHAUSTED"
    assert exc_info.value.status == 500


async def test_generate_unique_rejects_zero_attempts():
    async def never_taken(code):
        return False

    with pytest.raises(ValueError):
        await generate_unique(lambda: "X", never_taken, max_attempts=0)
