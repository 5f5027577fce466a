import pytest

from promptkeeper.errors import InvalidInputError
from promptkeeper.services.diff_service import DiffService, ensure_text


@pytest.fixture
def diff_service():
    return DiffService()


def test_empty_texts_have_zero_change_rate(diff_service):
    result = diff_service.compare_texts("", "")
    assert result.additions == 0
    assert result.deletions == 0
    assert result.change_rate == 0.0
    assert result.diff_html == ""


def test_identical_texts(diff_service):
    result = diff_service.compare_texts("abc", "abc")
    assert result.additions == 0
    assert result.deletions == 0
    assert result.change_rate == 0.0
    assert result.diff_html == "abc"


def test_pure_insertion(diff_service):
    result = diff_service.compare_texts("", "hello")
    assert result.additions == 5
    assert result.deletions == 0
    assert result.change_rate == 100.0
    assert result.diff_html == '<span class="diff-added">hello</span>'


def test_replacement_counts_and_markup(diff_service):
    result = diff_service.compare_texts("Hello world", "Hello there")
    assert result.additions > 0
    assert result.deletions > 0
    expected_rate = (result.additions + result.deletions) / (len("Hello world") + len("Hello there")) * 100
    assert result.change_rate == pytest.approx(expected_rate)
    assert result.diff_html.startswith("Hello ")
    assert '<span class="diff-added">' in result.diff_html
    assert '<span class="diff-deleted">' in result.diff_html


def test_is_deterministic(diff_service):
    old = "You are a helpful assistant. Answer briefly."
    new = "You are a terse assistant. Answer in one line."
    assert diff_service.compare_texts(old, new) == diff_service.compare_texts(old, new)


def test_accepts_utf8_bytes(diff_service):
    result = diff_service.compare_texts("héllo".encode("utf-8"), "héllo")
    assert result.additions == 0
    assert result.deletions == 0


def test_rejects_invalid_utf8(diff_service):
    with pytest.raises(InvalidInputError):
        diff_service.compare_texts(b"\xff\xfe\xfd", "abc")


def test_rejects_lone_surrogate():
    with pytest.raises(InvalidInputError):
        ensure_text("bad \ud800 text", "Prompt")


def test_rejects_non_text():
    with pytest.raises(InvalidInputError):
        ensure_text(42, "Prompt")
