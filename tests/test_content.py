import pytest

from content import assemble, body_from_submission, preview, validate_blocks, validate_flat
from errors import ValidationFailed
from models import Block, BlockBody, FlatBody, Paste
from models_sql import BlockIn

MAX = 50000
SOME_ID = "0f8fad5b-d9cb-469f-a165-70867728950e"


def test_flat_rejects_whitespace_only():
    with pytest.raises(ValidationFailed):
        validate_flat("  \n\t ", MAX)
    with pytest.raises(ValidationFailed):
        validate_flat(None, MAX)


def test_flat_keeps_text_as_submitted():
    assert validate_flat("  hello\n", MAX).text == "  hello\n"


def test_flat_rejects_oversized_text():
    with pytest.raises(ValidationFailed):
        validate_flat("x" * 11, 10)


def test_blocks_drop_empty_and_renumber_in_submission_order():
    body = validate_blocks([
        BlockIn(content="a", language="python", order=7),
        BlockIn(content="  ", language="text", order=0),
        BlockIn(content="b", order=1),
    ], MAX)
    assert [(b.content, b.order, b.language) for b in body.blocks] == [("a", 0, "python"), ("b", 1, "text")]


def test_blocks_all_empty_is_rejected():
    with pytest.raises(ValidationFailed):
        validate_blocks([BlockIn(content=" "), BlockIn(content=None)], MAX)


def test_block_id_kept_only_when_identifier_shaped():
    body = validate_blocks([
        BlockIn(id=SOME_ID.upper(), content="keep"),
        BlockIn(id="block-1", content="fresh"),
    ], MAX)
    assert body.blocks[0].id == SOME_ID
    assert body.blocks[1].id is None


def test_block_language_too_long_is_rejected():
    with pytest.raises(ValidationFailed):
        validate_blocks([BlockIn(content="a", language="x" * 51)], MAX)


def test_submission_shape_picks_representation():
    assert body_from_submission(None, None, MAX) is None
    assert isinstance(body_from_submission("hi", None, MAX), FlatBody)
    assert isinstance(body_from_submission(None, [BlockIn(content="x")], MAX), BlockBody)
    # an empty block list is not a block submission
    with pytest.raises(ValidationFailed):
        body_from_submission(None, [], MAX)


def test_submission_with_both_forms_is_rejected():
    with pytest.raises(ValidationFailed):
        body_from_submission("text", [BlockIn(content="x")], MAX)


def test_assemble_prefers_blocks_sorted_by_order():
    paste = Paste(id=SOME_ID, title="t", flat_content=None)
    body = assemble(paste, [Block(content="second", order=1), Block(content="first", order=0)])
    assert isinstance(body, BlockBody)
    assert [b.content for b in body.blocks] == ["first", "second"]


def test_assemble_without_blocks_is_flat_even_when_empty():
    body = assemble(Paste(id=SOME_ID, title="t", flat_content=None), [])
    assert body == FlatBody(text="")


def test_preview_truncates_long_content():
    assert preview(FlatBody(text="x" * 250)) == "x" * 200 + "..."
    assert preview(BlockBody(blocks=[Block(content="first block", order=0)])) == "first block"
