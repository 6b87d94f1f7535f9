# layout.py
"""
Keyboard layouts: character assignments and their ergonomic lookups.

A Blueprint is an immutable grid of rows -> key slots -> layer strings.
Its shape is fixed by the keyboard; only the characters change.

A Geometry holds the fixed tables of one physical keyboard:
- position costs per (row, slot), lower is easier
- layer costs, added for modifier layers
- the finger that reaches each (row, slot)
- the first right-hand slot of every row

A LayoutModel is derived from a Blueprint and a Geometry in one pass and
is never patched afterwards; a new Blueprint always gets a new model.
"""

import json
import logging
from dataclasses import dataclass
from functools import cached_property
from typing import Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from errors import ConfigError

logger = logging.getLogger(__name__)

#-----------------------------------------------------------------------------
# Fingers
#-----------------------------------------------------------------------------
FINGER_NAMES = (
    "pinky_left", "ring_left", "middle_left", "index_left", "thumb_left",
    "thumb_right", "index_right", "middle_right", "ring_right", "pinky_right",
)
UNASSIGNED_FINGER = -1

# (row, slot) positions reached by each finger on the reference keyboard
FINGER_POSITIONS = {
    "pinky_left": [(0, 0), (0, 1), (0, 2), (1, 0), (1, 1), (2, 0), (2, 1), (3, 0), (3, 1),
                   (3, 2), (4, 0), (4, 1)],
    "ring_left": [(0, 3), (1, 2), (2, 2), (3, 3)],
    "middle_left": [(0, 4), (1, 3), (2, 3), (3, 4)],
    "index_left": [(0, 5), (0, 6), (1, 4), (2, 4), (3, 5), (1, 5), (2, 5), (3, 6)],
    "thumb_left": [(4, 2), (4, 3)],
    "thumb_right": [(4, 3), (4, 4)],
    "index_right": [(0, 7), (0, 8), (1, 6), (2, 6), (3, 7), (1, 7), (2, 7), (3, 8)],
    "middle_right": [(0, 9), (1, 8), (2, 8), (3, 9)],
    "ring_right": [(0, 10), (1, 9), (2, 9), (3, 10)],
    "pinky_right": [(0, 11), (0, 12), (0, 13), (1, 10), (2, 10), (3, 11), (1, 11), (2, 11),
                    (1, 12), (2, 12), (1, 13), (2, 13), (3, 12), (4, 5), (4, 6), (4, 7)],
}

#-----------------------------------------------------------------------------
# Reference keyboard tables (5 rows, ISO-like, thumb row last)
#-----------------------------------------------------------------------------
POSITION_COSTS = [
    [80, 70, 60, 50, 50, 60, 60, 50, 50, 60, 70, 80, 90, 100],
    [40, 24, 20, 16, 16, 24, 24, 16, 16, 20, 24, 30, 45, 60],
    [30, 5, 3, 3, 3, 12, 12, 3, 3, 3, 5, 20, 30, 45],
    [15, 12, 20, 20, 18, 26, 30, 18, 18, 20, 20, 24, 15],
    [40, 40, 30, 2, 30, 40, 40, 40],
]

# base, shift, symbols, and three deeper modifier layers
LAYER_COSTS = [0, 15, 20, 25, 30, 35]

RIGHT_HAND_LOWEST_INDEXES = [7, 6, 6, 7, 3]

MISSING_POSITION_COST = 100.0

#-----------------------------------------------------------------------------
# Position
#-----------------------------------------------------------------------------
class Position(NamedTuple):
    """Coordinate of one layer string in a Blueprint."""
    row: int
    slot: int
    layer: int

#-----------------------------------------------------------------------------
# Geometry
#-----------------------------------------------------------------------------
@dataclass(frozen=True, eq=False)
class Geometry:
    """Fixed-size cost, finger and hand tables of one physical keyboard."""
    position_costs: np.ndarray      # Shape: (n_rows, max_slots), NaN where no key exists
    layer_costs: np.ndarray         # Shape: (n_layers,)
    fingers: np.ndarray             # Shape: (n_rows, max_slots), UNASSIGNED_FINGER if unknown
    right_hand_start: np.ndarray    # Shape: (n_rows,)
    missing_position_cost: float = MISSING_POSITION_COST

    @classmethod
    def from_tables(cls, position_costs: Sequence[Sequence[float]],
                    layer_costs: Sequence[float],
                    finger_positions: Optional[Dict[str, Sequence[Tuple[int, int]]]] = None,
                    right_hand_start: Optional[Sequence[int]] = None,
                    missing_position_cost: float = MISSING_POSITION_COST) -> "Geometry":
        """
        Build a Geometry from ragged row tables.

        Args:
            position_costs: Base cost per slot, one list per row
            layer_costs: Cost added per layer index
            finger_positions: Finger name -> (row, slot) list; later entries win
            right_hand_start: Lowest right-hand slot per row (default: half of each row)
            missing_position_cost: Cost of a position outside the table

        Returns:
            Geometry with padded fixed-size arrays
        """
        n_rows = len(position_costs)
        max_slots = max((len(row) for row in position_costs), default=0)

        costs = np.full((n_rows, max_slots), np.nan, dtype=np.float64)
        for r, row in enumerate(position_costs):
            costs[r, :len(row)] = row
        if np.any(costs[~np.isnan(costs)] < 0):
            raise ConfigError("Position costs must be non-negative")

        layers = np.asarray(layer_costs, dtype=np.float64)
        if layers.ndim != 1 or len(layers) == 0 or np.any(layers < 0):
            raise ConfigError("Layer costs must be a non-empty list of non-negative numbers")

        fingers = np.full((n_rows, max_slots), UNASSIGNED_FINGER, dtype=np.int64)
        for finger, positions in (finger_positions or {}).items():
            finger_idx = FINGER_NAMES.index(finger)
            for r, s in positions:
                if r < n_rows and s < max_slots:
                    fingers[r, s] = finger_idx

        if right_hand_start is None:
            right_hand_start = [len(row) // 2 for row in position_costs]
        if len(right_hand_start) != n_rows:
            raise ConfigError(f"Need one right-hand start index per row ({n_rows}), "
                              f"got {len(right_hand_start)}")

        return cls(costs, layers, fingers, np.asarray(right_hand_start, dtype=np.int64),
                   float(missing_position_cost))

    @property
    def n_rows(self) -> int:
        return self.position_costs.shape[0]

    def _in_table(self, row: int, slot: int) -> bool:
        return 0 <= row < self.position_costs.shape[0] and 0 <= slot < self.position_costs.shape[1]

    def position_cost(self, position: Position) -> float:
        """Base cost of the (row, slot) of a position; pure."""
        if not self._in_table(position.row, position.slot):
            return self.missing_position_cost
        cost = self.position_costs[position.row, position.slot]
        return self.missing_position_cost if np.isnan(cost) else float(cost)

    def layer_cost(self, layer: int) -> float:
        """Cost added for a layer; layers past the table cost as much as the last one."""
        return float(self.layer_costs[min(layer, len(self.layer_costs) - 1)])

    def key_cost(self, position: Position) -> float:
        return self.position_cost(position) + self.layer_cost(position.layer)

    def finger(self, position: Position) -> int:
        """Index into FINGER_NAMES, or UNASSIGNED_FINGER."""
        if not self._in_table(position.row, position.slot):
            return UNASSIGNED_FINGER
        return int(self.fingers[position.row, position.slot])

    def is_left(self, position: Position) -> bool:
        if not 0 <= position.row < len(self.right_hand_start):
            return False
        return position.slot < self.right_hand_start[position.row]


DEFAULT_GEOMETRY = Geometry.from_tables(POSITION_COSTS, LAYER_COSTS, FINGER_POSITIONS,
                                        RIGHT_HAND_LOWEST_INDEXES)

#-----------------------------------------------------------------------------
# Blueprint
#-----------------------------------------------------------------------------
Rows = Tuple[Tuple[Tuple[str, ...], ...], ...]


@dataclass(frozen=True)
class Blueprint:
    """Immutable character grid: rows -> key slots -> layer strings."""
    rows: Rows

    @classmethod
    def from_nested(cls, nested) -> "Blueprint":
        """
        Build from nested lists, validating the cell contents.

        Raises:
            ConfigError: If the structure is not rows of keys of strings, or
                a layer string is longer than one character
        """
        if not isinstance(nested, (list, tuple)):
            raise ConfigError("A layout must be a list of rows")
        rows = []
        for r, row in enumerate(nested):
            if not isinstance(row, (list, tuple)):
                raise ConfigError(f"Row {r} of the layout is not a list of keys")
            keys = []
            for s, key in enumerate(row):
                if isinstance(key, str) or not isinstance(key, (list, tuple)):
                    raise ConfigError(f"Key ({r}, {s}) of the layout is not a list of layers")
                for layer, char in enumerate(key):
                    if not isinstance(char, str) or len(char) > 1:
                        raise ConfigError(
                            f"Layer {layer} of key ({r}, {s}) must be one character or empty, "
                            f"got {char!r}")
                keys.append(tuple(key))
            rows.append(tuple(keys))
        return cls(tuple(rows))

    def to_nested(self) -> List[List[List[str]]]:
        return [[list(key) for key in row] for row in self.rows]

    @property
    def shape(self) -> Tuple[Tuple[int, ...], ...]:
        """Number of layers of every key, per row."""
        return tuple(tuple(len(key) for key in row) for row in self.rows)

    def cells(self) -> Iterator[Tuple[Position, str]]:
        """All (position, char) cells in row, slot, layer order."""
        for r, row in enumerate(self.rows):
            for s, key in enumerate(row):
                for layer, char in enumerate(key):
                    yield Position(r, s, layer), char

    @cached_property
    def _layer0_index(self) -> Dict[str, Tuple[int, int]]:
        index = {}
        for r, row in enumerate(self.rows):
            for s, key in enumerate(row):
                if key and key[0] and key[0] not in index:
                    index[key[0]] = (r, s)
        return index

    def find_key(self, char: str) -> Optional[Tuple[int, int]]:
        """(row, slot) of the first layer-0 cell holding char."""
        return self._layer0_index.get(char)

    def layer0_chars(self) -> str:
        return "".join(self._layer0_index)

    def with_key(self, row: int, slot: int, layer: int, char: str) -> "Blueprint":
        """Copy with one cell replaced; the shape is unchanged."""
        if not (0 <= row < len(self.rows) and 0 <= slot < len(self.rows[row])
                and 0 <= layer < len(self.rows[row][slot])):
            raise IndexError(f"No cell at ({row}, {slot}, {layer})")
        key = self.rows[row][slot]
        new_key = key[:layer] + (char,) + key[layer + 1:]
        new_row = self.rows[row][:slot] + (new_key,) + self.rows[row][slot + 1:]
        return Blueprint(self.rows[:row] + (new_row,) + self.rows[row + 1:])


def apply_swap(blueprint: Blueprint, old_char: str, new_char: str) -> Blueprint:
    """
    Exchange the layer-0 cells of two characters.

    Every layer-0 cell holding old_char gets new_char and every one holding
    new_char gets old_char, so duplicated characters move together.
    Returns a new Blueprint; the input is never modified. Applying the same
    swap twice gives back the original.

    Raises:
        ValueError: If either character is not on layer 0
    """
    if old_char == new_char:
        return blueprint

    for char in (old_char, new_char):
        if blueprint.find_key(char) is None:
            raise ValueError(f"Character {char!r} is not on layer 0 of the layout")

    exchange = {old_char: new_char, new_char: old_char}

    def swap_key(key):
        if key and key[0] in exchange:
            return (exchange[key[0]],) + key[1:]
        return key

    return Blueprint(tuple(tuple(swap_key(key) for key in row) for row in blueprint.rows))


def merge_layout_string(blueprint: Blueprint, layout_str: str) -> Blueprint:
    """
    Override layer-0 characters from a compact layout string.

    Spaces are dropped, each line is one row. Row i, character j of the
    string goes to (i + 1, j + 1, 0): the first row and first slot are
    left as they are.

    Raises:
        ConfigError: If the string reaches outside the blueprint
    """
    clean_layout_str = layout_str.replace(" ", "").replace("\r", "")
    for line_idx, line in enumerate(clean_layout_str.split("\n")):
        for char_idx, char in enumerate(line):
            try:
                blueprint = blueprint.with_key(line_idx + 1, char_idx + 1, 0, char)
            except IndexError:
                raise ConfigError(
                    f"Starting layout character {char!r} (line {line_idx + 1}, "
                    f"column {char_idx + 1}) lies outside the base layout")
    return blueprint


def format_blueprint(blueprint: Blueprint) -> str:
    """Layer 0 as text, one line per row."""
    visible = {"": " ", "\n": "⏎", "\t": "⇥", " ": "␣"}
    lines = []
    for row in blueprint.rows:
        lines.append("".join(visible.get(key[0] if key else "", key[0] if key else " ")
                             for key in row))
    return "\n".join(lines)


def parse_blueprint(text: str, source: str = "<layout>") -> Blueprint:
    """Parse the nested-array JSON layout format."""
    try:
        nested = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid layout file {source}: {e}")
    return Blueprint.from_nested(nested)


def load_blueprint(path: str) -> Blueprint:
    """
    Read a layout file.

    Raises:
        ConfigError: If the file is missing, unreadable or malformed
    """
    logger.debug("Reading json from argument with path %s.", path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise ConfigError(f"Unable to read layout file {path}: {e}")
    return parse_blueprint(text, path)


def blueprint_to_json(blueprint: Blueprint) -> str:
    return json.dumps(blueprint.to_nested(), ensure_ascii=False)

#-----------------------------------------------------------------------------
# Layout model
#-----------------------------------------------------------------------------
class LayoutModel:
    """
    Ergonomic lookups derived from one Blueprint snapshot.

    Every character in the blueprint has exactly one entry in char_pos and
    char_finger: its cheapest cell, the first one seen on ties.
    """

    def __init__(self, blueprint: Blueprint, geometry: Geometry,
                 char_pos: Dict[str, Position], char_finger: Dict[str, int],
                 pos_is_left: Dict[Position, bool], pos_char: Dict[Position, str]):
        self.blueprint = blueprint
        self.geometry = geometry
        self.char_pos = char_pos
        self.char_finger = char_finger
        self.pos_is_left = pos_is_left
        self.pos_char = pos_char

    @classmethod
    def from_blueprint(cls, blueprint: Blueprint,
                       geometry: Geometry = DEFAULT_GEOMETRY) -> "LayoutModel":
        """Derive all lookups in a single pass over the cells."""
        char_pos: Dict[str, Position] = {}
        char_cost: Dict[str, float] = {}
        char_finger: Dict[str, int] = {}
        pos_is_left: Dict[Position, bool] = {}
        pos_char: Dict[Position, str] = {}

        for pos, char in blueprint.cells():
            pos_is_left[pos] = geometry.is_left(pos)
            if not char:
                continue
            pos_char[pos] = char

            cost = geometry.key_cost(pos)
            if char not in char_pos or cost < char_cost[char]:
                char_pos[char] = pos
                char_cost[char] = cost
                char_finger[char] = geometry.finger(pos)

        return cls(blueprint, geometry, char_pos, char_finger, pos_is_left, pos_char)

    def key_cost(self, char: str) -> Optional[float]:
        """Position plus layer cost of a character, None if it has no key."""
        pos = self.char_pos.get(char)
        if pos is None:
            return None
        return self.geometry.key_cost(pos)

    def finger_name(self, char: str) -> Optional[str]:
        finger = self.char_finger.get(char, UNASSIGNED_FINGER)
        return FINGER_NAMES[finger] if finger != UNASSIGNED_FINGER else None

    def __repr__(self) -> str:
        return f"LayoutModel({len(self.char_pos)} characters)"

#-----------------------------------------------------------------------------
# Embedded reference layout (NEO style: base, shift and symbol layers)
#-----------------------------------------------------------------------------
DEFAULT_LAYOUT = [
    [["^", "ˇ", "↻"], ["1", "°", "¹"], ["2", "§", "²"], ["3", "ℓ", "³"], ["4", "»", "›"],
     ["5", "«", "‹"], ["6", "$", "¢"], ["7", "€", "¥"], ["8", "„", "‚"], ["9", "“", "‘"],
     ["0", "”", "’"], ["-", "—"], ["`", "¸"], ["←"]],
    [["\t"], ["x", "X", "…"], ["v", "V", "_"], ["l", "L", "["], ["c", "C", "]"],
     ["w", "W", "^"], ["k", "K", "!"], ["h", "H", "<"], ["g", "G", ">"], ["f", "F", "="],
     ["q", "Q", "&"], ["ß", "ẞ", "ſ"], ["´", "~"], ["\n"]],
    [["⇩"], ["u", "U", "\\"], ["i", "I", "/"], ["a", "A", "{"], ["e", "E", "}"],
     ["o", "O", "*"], ["s", "S", "?"], ["n", "N", "("], ["r", "R", ")"], ["t", "T", "-"],
     ["d", "D", ":"], ["y", "Y", "@"], ["⇘"], ["\n"]],
    [["⇧"], ["⇚"], ["ü", "Ü", "#"], ["ö", "Ö", "$"], ["ä", "Ä", "|"], ["p", "P", "~"],
     ["z", "Z", "`"], ["b", "B", "+"], ["m", "M", "%"], [",", "–", "\""], [".", "•", "'"],
     ["j", "J", ";"], ["⇗"]],
    [["⌃"], ["❖"], ["⌥"], [" "], ["⇙"], ["⎇"], ["☰"], ["⌤"]],
]

DEFAULT_BLUEPRINT = Blueprint.from_nested(DEFAULT_LAYOUT)
