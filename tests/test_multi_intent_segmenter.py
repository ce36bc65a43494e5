#!/usr/bin/env python3
"""Multi-Intent Segmenter Tests"""

import pytest

from conftest import MAINNET_ADDRESS
from walletchat.agents.multi_intent_segmenter import (
    MultiIntentSegmenter, action_family, count_wallet_keywords
)


@pytest.fixture
def segmenter():
    return MultiIntentSegmenter()


def test_single_command_is_not_split(segmenter):
    assert segmenter.split_if_compound("what's my balance") == ["what's my balance"]


def test_two_queries_are_split_in_order(segmenter):
    assert segmenter.split_if_compound("check balance and show fees") == ["check balance", "show fees"]


def test_then_connector(segmenter):
    assert segmenter.split_if_compound("show my balance then show the price") == [
        "show my balance", "show the price"
    ]


def test_sentence_boundary(segmenter):
    assert segmenter.split_if_compound("Balance please. Price too") == ["Balance please", "Price too"]


def test_connector_inside_one_command_is_kept(segmenter):
    text = "bread and butter"
    assert segmenter.split_if_compound(text) == [text]


def test_action_segment_takes_the_turn(segmenter):
    text = f"send 0.001 btc to {MAINNET_ADDRESS} and show my balance"
    assert segmenter.split_if_compound(text) == [f"send 0.001 btc to {MAINNET_ADDRESS}"]


def test_only_first_action_survives(segmenter):
    text = "send 0.01 btc and receive 0.02 btc"
    segments = segmenter.split_if_compound(text)
    assert segments == ["send 0.01 btc"]


def test_spanish_connector(segmenter):
    assert segmenter.split_if_compound("saldo y precio") == ["saldo", "precio"]


def test_is_compound(segmenter):
    assert segmenter.is_compound("balance and fees")
    assert not segmenter.is_compound("balance")


def test_helpers():
    assert count_wallet_keywords("balance and fees") == 2
    assert action_family("pay my friend") == "send"
    assert action_family("deposit address") == "receive"
    assert action_family("balance") is None
