"""Character-level content diffs between two prompt versions."""
import logging

from diff_match_patch import diff_match_patch

from promptkeeper.errors import InvalidInputError
from promptkeeper.schemas import DiffResult

logger = logging.getLogger(__name__)

ADDED_OPEN = '<span class="diff-added">'
DELETED_OPEN = '<span class="diff-deleted">'
SPAN_CLOSE = "</span>"


def ensure_text(value, label: str) -> str:
    if isinstance(value, (bytes, bytearray)):
        try:
            value = bytes(value).decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidInputError(f"{label} text is not valid UTF-8: {e}")
    if not isinstance(value, str):
        raise InvalidInputError(f"{label} text must be a string, got {type(value).__name__}")
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as e:
        # Lone surrogates cannot be rendered or stored faithfully.
        raise InvalidInputError(f"{label} text is not valid Unicode: {e}")
    return value


class DiffService:
    """Wraps diff-match-patch and renders its spans as inline markup."""

    def __init__(self, timeout: float = 0.0):
        self.dmp = diff_match_patch()
        # 0 disables the time budget so output depends only on the inputs.
        self.dmp.Diff_Timeout = timeout

    def compare_texts(self, old_text, new_text) -> DiffResult:
        """
        Diffs ``old_text`` against ``new_text``.

        Args:
            old_text: Source content (str, or UTF-8 bytes).
            new_text: Target content (str, or UTF-8 bytes).

        Returns:
            A DiffResult with insert/delete character counts, the change rate
            as a percentage of the combined length, and the rendered markup.

        Raises:
            InvalidInputError: If either input is not valid text.
        """
        old_text = ensure_text(old_text, "Old")
        new_text = ensure_text(new_text, "New")

        diffs = self.dmp.diff_main(old_text, new_text, False)

        additions = 0
        deletions = 0
        rendered = []
        for op, text in diffs:
            if op == self.dmp.DIFF_INSERT:
                additions += len(text)
                rendered.append(f"{ADDED_OPEN}{text}{SPAN_CLOSE}")
            elif op == self.dmp.DIFF_DELETE:
                deletions += len(text)
                rendered.append(f"{DELETED_OPEN}{text}{SPAN_CLOSE}")
            else:
                rendered.append(text)

        total = len(old_text) + len(new_text)
        change_rate = 0.0
        if total > 0:
            change_rate = (additions + deletions) / total * 100

        return DiffResult(
            additions=additions,
            deletions=deletions,
            change_rate=change_rate,
            diff_html="".join(rendered),
        )
