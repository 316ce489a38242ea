import math

import pytest

from qirag.retrieval.tokenize import (
    cosine_similarity,
    is_han,
    lexical_similarity,
    normalize_text,
    tokenize_for_search,
)


def test_normalize_text_collapses_whitespace_and_blank_lines():
    raw = "  第一行\r\n\u3000缩进\t\t文字\n\n\n\n第二段  "
    assert normalize_text(raw) == "第一行\n 缩进 文字\n\n第二段"


def test_normalize_text_handles_empty_input():
    assert normalize_text("") == ""
    assert normalize_text(None) == ""


def test_is_han():
    assert is_han("气")
    assert not is_han("a")
    assert not is_han("，")


def test_tokenize_latin_then_han_bigrams():
    tokens = tokenize_for_search("Qi Deficiency 气虚乏力 a1")
    assert tokens == ["qi", "deficiency", "a1", "气虚", "虚乏", "乏力"]


def test_tokenize_drops_single_characters_and_duplicates():
    assert tokenize_for_search("a b c 气") == []
    assert tokenize_for_search("tea tea TEA") == ["tea"]


def test_tokenize_bridges_han_runs_across_separators():
    assert tokenize_for_search("气虚，乏力") == ["气虚", "虚乏", "乏力"]


def test_tokenize_rejoined_tokens_cover_first_pass():
    for text in ["Sleep quality and diet 2024", "脾胃虚弱容易疲劳"]:
        tokens = tokenize_for_search(text)
        again = tokenize_for_search(" ".join(tokens))
        if text.isascii():
            assert set(again) == set(tokens)
        else:
            assert set(tokens) <= set(again)


def test_tokenize_mixed_script_rejoin_adds_bridging_bigrams():
    tokens = tokenize_for_search("气虚 fatigue")
    assert tokens == ["fatigue", "气虚"]
    assert set(tokenize_for_search(" ".join(["气虚", "乏力"]))) > {"气虚", "乏力"}


def test_cosine_similarity_properties():
    v = [0.3, -1.2, 2.0]
    w = [1.0, 0.5, -0.25]
    assert cosine_similarity(v, v) == pytest.approx(1.0)
    assert cosine_similarity([], v) == 0.0
    assert cosine_similarity(v, [1.0, 2.0]) == 0.0
    assert cosine_similarity([0.0, 0.0, 0.0], v) == 0.0
    assert cosine_similarity(v, w) == pytest.approx(cosine_similarity(w, v))


def test_cosine_similarity_never_nan():
    score = cosine_similarity([1e-200, 1e-200], [1e-200, 1e-200])
    assert not math.isnan(score)


def test_lexical_similarity():
    query = ["乏力", "调理"]
    doc = ["气虚", "乏力", "容易", "疲劳"]
    assert lexical_similarity(query, doc) == pytest.approx(1 / math.sqrt(8))
    assert lexical_similarity([], doc) == 0.0
    assert lexical_similarity(query, []) == 0.0
