"""Word-search puzzle generation and selection matching.

Words are cleaned to the letters A-Z, placed in a square grid along any
of the eight straight directions and the remaining cells are filled with
random letters. Placement prefers positions that share letters with
words already on the grid. A bounded backtracking search tries to place
every word; when its budget runs out a greedy pass places what it can
and skips the rest.

Generation is deterministic for a given seed, so a puzzle can be
rebuilt server-side from the seed a client played with.
"""

from __future__ import annotations

import random
import string
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

MIN_GRID_SIZE = 5
GRID_PADDING = 5
DEFAULT_MAX_ATTEMPTS = 200
BRANCH_LIMIT = 3

# (row step, column step): E, W, S, N, SE, NW, NE, SW
DIRECTIONS: Tuple[Tuple[int, int], ...] = (
    (0, 1),
    (0, -1),
    (1, 0),
    (-1, 0),
    (1, 1),
    (-1, -1),
    (-1, 1),
    (1, -1),
)

Cell = Tuple[int, int]


@dataclass
class PlacedWord:
    word: str
    original_word: str
    positions: List[Cell]


@dataclass
class Puzzle:
    """A generated grid together with the words hidden in it."""
    size: int
    grid: List[List[str]]
    placed: List[PlacedWord] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    seed: Optional[int] = None

    def letters_at(self, cells: Iterable[Cell]) -> str:
        return "".join(self.grid[r][c] for r, c in cells)

    def rows(self) -> List[str]:
        return ["".join(row) for row in self.grid]

    def to_dict(self, reveal: bool = False) -> dict:
        words = []
        for p in self.placed:
            item = {"word": p.word, "original_word": p.original_word}
            if reveal:
                item["positions"] = [{"row": r, "col": c} for r, c in p.positions]
            words.append(item)
        return {"seed": self.seed, "size": self.size, "grid": self.grid, "words": words, "skipped": list(self.skipped)}


def clean_word(word: str) -> str:
    """Uppercase `word` and drop everything outside A-Z."""
    return "".join(ch for ch in (word or "").upper() if "A" <= ch <= "Z")


def grid_size_for(words: Iterable[str]) -> int:
    """Longest cleaned word plus padding, never below `MIN_GRID_SIZE`."""
    lengths = [len(clean_word(w)) for w in words]
    longest = max(lengths) if lengths else 0
    return max(longest + GRID_PADDING, MIN_GRID_SIZE)


class _Placer:
    def __init__(self, size: int, rng: random.Random, directions: Sequence[Tuple[int, int]]):
        self.size = size
        self.rng = rng
        self.directions = directions
        self.grid: List[List[Optional[str]]] = [[None] * size for _ in range(size)]
        self.attempts_left = 0

    def _start_range(self, step: int, length: int) -> range:
        if step > 0:
            return range(0, self.size - length + 1)
        if step < 0:
            return range(length - 1, self.size)
        return range(0, self.size)

    def candidates(self, word: str) -> List[List[Cell]]:
        """Valid placements for `word`, best intersection score first."""
        n = len(word)
        scored = []
        for dr, dc in self.directions:
            for r in self._start_range(dr, n):
                for c in self._start_range(dc, n):
                    shared = 0
                    cells = []
                    for i, letter in enumerate(word):
                        rr, cc = r + dr * i, c + dc * i
                        current = self.grid[rr][cc]
                        if current is not None:
                            if current != letter:
                                break
                            shared += 1
                        cells.append((rr, cc))
                    else:
                        # lying entirely on existing letters would hide the word inside another
                        if shared < n:
                            scored.append((-shared, self.rng.random(), cells))
        scored.sort(key=lambda s: (s[0], s[1]))
        return [cells for _, _, cells in scored]

    def apply(self, word: str, cells: List[Cell]) -> List[Cell]:
        fresh = []
        for letter, (r, c) in zip(word, cells):
            if self.grid[r][c] is None:
                self.grid[r][c] = letter
                fresh.append((r, c))
        return fresh

    def undo(self, fresh: List[Cell]) -> None:
        for r, c in fresh:
            self.grid[r][c] = None

    def search(self, entries: List[Tuple[str, str]], index: int, placed: List[PlacedWord]) -> bool:
        if index == len(entries):
            return True
        original, word = entries[index]
        for cells in self.candidates(word)[:BRANCH_LIMIT]:
            if self.attempts_left <= 0:
                return False
            self.attempts_left -= 1
            fresh = self.apply(word, cells)
            placed.append(PlacedWord(word=word, original_word=original, positions=cells))
            if self.search(entries, index + 1, placed):
                return True
            placed.pop()
            self.undo(fresh)
        return False

    def greedy(self, entries: List[Tuple[str, str]]) -> Tuple[List[PlacedWord], List[str]]:
        placed, skipped = [], []
        for original, word in entries:
            options = self.candidates(word)
            if not options:
                skipped.append(original)
                continue
            self.apply(word, options[0])
            placed.append(PlacedWord(word=word, original_word=original, positions=options[0]))
        return placed, skipped

    def reset(self) -> None:
        self.grid = [[None] * self.size for _ in range(self.size)]

    def fill(self) -> List[List[str]]:
        return [
            [cell if cell is not None else self.rng.choice(string.ascii_uppercase) for cell in row]
            for row in self.grid
        ]


def generate_puzzle(
    words: Sequence[str],
    size: Optional[int] = None,
    seed: Optional[int] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    directions: Sequence[Tuple[int, int]] = DIRECTIONS,
) -> Puzzle:
    """Build a puzzle hiding `words` in a `size` x `size` grid.

    `size` defaults to `grid_size_for(words)`. Words shorter than two
    letters after cleaning, duplicates and words that cannot be placed
    are reported in `Puzzle.skipped`. `max_attempts` bounds the number
    of placements the backtracking search may try.
    """
    if seed is None:
        seed = random.SystemRandom().randrange(2 ** 31)
    rng = random.Random(seed)
    if size is None:
        size = grid_size_for(words)
    if size < 1:
        raise ValueError("grid size must be positive")

    entries: List[Tuple[str, str]] = []
    skipped: List[str] = []
    seen = set()
    for original in words:
        cleaned = clean_word(original)
        if len(cleaned) < 2 or cleaned in seen:
            skipped.append(original)
            continue
        seen.add(cleaned)
        entries.append((original, cleaned))
    rng.shuffle(entries)
    entries.sort(key=lambda e: len(e[1]), reverse=True)

    placer = _Placer(size, rng, directions)
    placer.attempts_left = max_attempts
    placed: List[PlacedWord] = []
    if not placer.search(entries, 0, placed):
        placer.reset()
        placed, missing = placer.greedy(entries)
        skipped.extend(missing)
    return Puzzle(size=size, grid=placer.fill(), placed=placed, skipped=skipped, seed=seed)


def selection_cells(start: Cell, end: Cell) -> Optional[List[Cell]]:
    """Cells on the straight line from `start` to `end`, inclusive.

    Returns None unless the line is horizontal, vertical or a 45 degree
    diagonal.
    """
    (sr, sc), (er, ec) = start, end
    dr, dc = er - sr, ec - sc
    if not (dr == 0 or dc == 0 or abs(dr) == abs(dc)):
        return None
    steps = max(abs(dr), abs(dc))
    step_r = (dr > 0) - (dr < 0)
    step_c = (dc > 0) - (dc < 0)
    return [(sr + step_r * i, sc + step_c * i) for i in range(steps + 1)]


def match_selection(puzzle: Puzzle, start: Cell, end: Cell, exclude: Iterable[str] = ()) -> Optional[PlacedWord]:
    """Return the placed word spelled by the selection, read either way.

    Words listed in `exclude` (already found) are not matched again.
    """
    cells = selection_cells(start, end)
    if not cells:
        return None
    if any(not (0 <= r < puzzle.size and 0 <= c < puzzle.size) for r, c in cells):
        return None
    letters = puzzle.letters_at(cells)
    backwards = letters[::-1]
    done = {clean_word(w) for w in exclude}
    for p in puzzle.placed:
        if p.word in done:
            continue
        if p.word == letters or p.word == backwards:
            return p
    return None
