import string

from aklatan.utils.word_search import (
    MIN_GRID_SIZE,
    clean_word,
    generate_puzzle,
    grid_size_for,
    match_selection,
    selection_cells,
)

WORDS = ["Aklatan", "Kuwento", "Bata", "Guro", "Aral", "Libro", "Sulat", "Basa"]


def _assert_straight_line(positions):
    steps = {(b[0] - a[0], b[1] - a[1]) for a, b in zip(positions, positions[1:])}
    assert len(steps) == 1
    dr, dc = steps.pop()
    assert (dr, dc) != (0, 0)
    assert dr in (-1, 0, 1) and dc in (-1, 0, 1)


def test_clean_word_and_grid_size():
    assert clean_word("Ka-ibigan 2!") == "KAIBIGAN"
    assert grid_size_for(["Aso", "Kuwento"]) == len("KUWENTO") + 5
    assert grid_size_for(["a"]) == max(1 + 5, MIN_GRID_SIZE)
    assert grid_size_for([]) == MIN_GRID_SIZE


def test_grid_dimensions_and_fill():
    puzzle = generate_puzzle(WORDS, seed=7)
    assert puzzle.size == grid_size_for(WORDS)
    assert len(puzzle.grid) == puzzle.size
    for row in puzzle.grid:
        assert len(row) == puzzle.size
        assert all(cell in string.ascii_uppercase and len(cell) == 1 for cell in row)


def test_placed_words_are_readable_and_consistent():
    puzzle = generate_puzzle(WORDS, seed=11)
    assert len(puzzle.placed) + len(puzzle.skipped) == len(WORDS)
    letters_by_cell = {}
    for p in puzzle.placed:
        assert p.word == clean_word(p.original_word)
        assert len(p.positions) == len(p.word)
        _assert_straight_line(p.positions)
        assert puzzle.letters_at(p.positions) == p.word
        for (r, c), letter in zip(p.positions, p.word):
            # intersecting placements must agree on the shared letter
            assert letters_by_cell.setdefault((r, c), letter) == letter


def test_same_seed_same_puzzle():
    a = generate_puzzle(WORDS, seed=1234)
    b = generate_puzzle(WORDS, seed=1234)
    assert a.grid == b.grid
    assert [p.positions for p in a.placed] == [p.positions for p in b.placed]
    assert generate_puzzle(WORDS).seed is not None


def test_short_and_duplicate_words_are_skipped():
    puzzle = generate_puzzle(["Aso", "aso", "A", "!!", "Pusa"], seed=3)
    assert sorted(p.word for p in puzzle.placed) == ["ASO", "PUSA"]
    assert set(puzzle.skipped) == {"aso", "A", "!!"}


def test_word_longer_than_grid_is_skipped():
    puzzle = generate_puzzle(["ABCDEFGHIJ", "ABC"], size=5, seed=5)
    assert [p.word for p in puzzle.placed] == ["ABC"]
    assert puzzle.skipped == ["ABCDEFGHIJ"]


def test_greedy_fallback_when_search_budget_is_zero():
    puzzle = generate_puzzle(["Aso", "Pusa", "Ibon"], seed=9, max_attempts=0)
    assert sorted(p.word for p in puzzle.placed) == ["ASO", "IBON", "PUSA"]
    for p in puzzle.placed:
        assert puzzle.letters_at(p.positions) == p.word


def test_restricted_directions():
    puzzle = generate_puzzle(["Aso", "Pusa", "Ibon"], seed=2, directions=[(0, 1)])
    for p in puzzle.placed:
        rows = {r for r, _ in p.positions}
        assert len(rows) == 1
        assert p.positions[0][1] < p.positions[-1][1]


def test_word_is_not_hidden_inside_another():
    puzzle = generate_puzzle(["Basahin", "Basa"], seed=4)
    long_word = next(p for p in puzzle.placed if p.word == "BASAHIN")
    short_word = next(p for p in puzzle.placed if p.word == "BASA")
    assert not set(short_word.positions) <= set(long_word.positions)


def test_selection_cells():
    assert selection_cells((0, 0), (0, 3)) == [(0, 0), (0, 1), (0, 2), (0, 3)]
    assert selection_cells((3, 3), (1, 1)) == [(3, 3), (2, 2), (1, 1)]
    assert selection_cells((0, 0), (1, 2)) is None
    assert selection_cells((2, 2), (2, 2)) == [(2, 2)]


def test_match_selection_accepts_both_directions():
    puzzle = generate_puzzle(["Aso", "Pusa", "Ibon"], seed=21)
    for p in puzzle.placed:
        start, end = p.positions[0], p.positions[-1]
        assert match_selection(puzzle, start, end).word == p.word
        assert match_selection(puzzle, end, start).word == p.word
        assert match_selection(puzzle, start, end, exclude=[p.original_word]) is None


def test_match_selection_rejects_bad_lines():
    puzzle = generate_puzzle(["Aso"], seed=8)
    assert match_selection(puzzle, (0, 0), (1, 2)) is None
    assert match_selection(puzzle, (0, 0), (0, puzzle.size + 2)) is None
