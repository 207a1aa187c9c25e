"""
Incremental Merkle accumulator for the anonymity set.

The tree has a fixed height chosen at construction. Inserting a leaf only
rehashes the path from that leaf to the root: every level keeps the most
recently completed left subtree ("filled subtree") and an empty right
sibling is replaced by the precomputed zero hash of that level. A ring of
recent roots lets a withdrawal reference a root that was current a few
insertions ago.

The compression function is pluggable. The default hashes
``domain || left || right`` with SHA-256 and reduces into the scalar field,
always in fixed (left, right) order.
"""

from __future__ import annotations

import hashlib
from typing import Callable, Dict, List, Sequence, Tuple

from .config import (
    DEFAULT_TREE_HEIGHT,
    DOMAIN_SEPARATORS,
    FIELD_SIZE,
    MAX_TREE_HEIGHT,
    ROOT_HISTORY_SIZE,
    ZERO_VALUE,
)
from .exceptions import (
    ConfigurationError,
    LeafOutOfField,
    TreeFull,
    ValidationError,
)
from .types import IdentifierLike, to_bytes32, to_field_element

Hasher = Callable[[int, int], int]


def hash_left_right(left: int, right: int) -> int:
    """
    Hash two tree nodes into their parent.

    Args:
        left: Left child (field element)
        right: Right child (field element)

    Returns:
        Parent node as a field element

    Note:
        Uses fixed left||right ordering (no sorting).
        Domain separation applied.
    """
    if not 0 <= left < FIELD_SIZE:
        raise LeafOutOfField("left should be inside the field")
    if not 0 <= right < FIELD_SIZE:
        raise LeafOutOfField("right should be inside the field")
    digest = hashlib.sha256(
        DOMAIN_SEPARATORS["merkle_node"] + to_bytes32(left) + to_bytes32(right)
    ).digest()
    return int.from_bytes(digest, "big") % FIELD_SIZE


def zero_hashes(height: int, hasher: Hasher = hash_left_right) -> List[int]:
    """
    Roots of empty subtrees for levels 0..height.

    ``zeros[0]`` is the empty leaf, ``zeros[height]`` the empty-tree root.
    """
    zeros = [ZERO_VALUE]
    for _ in range(height):
        zeros.append(hasher(zeros[-1], zeros[-1]))
    return zeros


def _validate_height(height: int) -> None:
    if not isinstance(height, int) or isinstance(height, bool):
        raise ConfigurationError("height must be int")
    if height <= 0:
        raise ConfigurationError("height should be greater than zero")
    if height >= MAX_TREE_HEIGHT:
        raise ConfigurationError(f"height should be less than {MAX_TREE_HEIGHT}")


class AnonymitySetTree:
    """
    Fixed-capacity incremental Merkle tree with bounded root history.

    Usage:
        tree = AnonymitySetTree(height=20)
        index = tree.insert(commitment)
        assert tree.is_known_root(tree.last_root)
    """

    def __init__(
        self,
        height: int = DEFAULT_TREE_HEIGHT,
        root_history_size: int = ROOT_HISTORY_SIZE,
        hasher: Hasher = hash_left_right,
    ) -> None:
        _validate_height(height)
        if not isinstance(root_history_size, int) or root_history_size <= 0:
            raise ConfigurationError("root_history_size must be a positive int")

        self._height = height
        self._root_history_size = root_history_size
        self._hasher = hasher
        self._zeros = zero_hashes(height, hasher)

        self._filled_subtrees: List[int] = list(self._zeros[:height])
        self._roots: List[int] = [0] * root_history_size
        self._roots[0] = self._zeros[height]
        self._current_root_index = 0
        self._next_index = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def height(self) -> int:
        return self._height

    @property
    def capacity(self) -> int:
        return 2**self._height

    @property
    def root_history_size(self) -> int:
        return self._root_history_size

    @property
    def next_index(self) -> int:
        return self._next_index

    @property
    def last_root(self) -> int:
        return self._roots[self._current_root_index]

    @property
    def is_full(self) -> bool:
        return self._next_index >= self.capacity

    def zeros(self, level: int) -> int:
        """Root of an empty subtree at ``level`` (0 = leaf)."""
        if not 0 <= level <= self._height:
            raise IndexError(f"level out of range: {level}")
        return self._zeros[level]

    def filled_subtree(self, level: int) -> int:
        if not 0 <= level < self._height:
            raise IndexError(f"level out of range: {level}")
        return self._filled_subtrees[level]

    def known_roots(self) -> List[int]:
        """Ring contents, newest first, without unused slots."""
        roots = []
        i = self._current_root_index
        for _ in range(self._root_history_size):
            if self._roots[i] != 0:
                roots.append(self._roots[i])
            i = (i - 1) % self._root_history_size
        return roots

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def insert(self, leaf: IdentifierLike) -> int:
        """
        Append a leaf and return its index.

        Raises:
            TreeFull: If all 2^height slots are used
            LeafOutOfField: If the leaf is not a field element
        """
        leaf_value = to_field_element(leaf, "leaf")
        index = self._next_index
        if index >= self.capacity:
            raise TreeFull(
                "Anonymity set is full; no further deposits are possible"
            )

        # Compute everything first so a failing hasher leaves the tree intact
        filled_updates: Dict[int, int] = {}
        current_index = index
        current = leaf_value
        for level in range(self._height):
            if current_index % 2 == 0:
                left = current
                right = self._zeros[level]
                filled_updates[level] = current
            else:
                left = self._filled_subtrees[level]
                right = current
            current = self._hasher(left, right)
            current_index //= 2

        for level, value in filled_updates.items():
            self._filled_subtrees[level] = value
        self._current_root_index = (
            self._current_root_index + 1
        ) % self._root_history_size
        self._roots[self._current_root_index] = current
        self._next_index = index + 1
        return index

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_known_root(self, root: IdentifierLike) -> bool:
        """Whether ``root`` is one of the last ``root_history_size`` roots."""
        try:
            value = to_field_element(root, "root")
        except ValidationError:
            return False
        if value == 0:
            return False

        i = self._current_root_index
        for _ in range(self._root_history_size):
            if self._roots[i] == value:
                return True
            i = (i - 1) % self._root_history_size
        return False

    # ------------------------------------------------------------------
    # Unit-of-work participation
    # ------------------------------------------------------------------

    def snapshot(self) -> Tuple[Tuple[int, ...], Tuple[int, ...], int, int]:
        return (
            tuple(self._filled_subtrees),
            tuple(self._roots),
            self._current_root_index,
            self._next_index,
        )

    def restore(self, state: Tuple[Tuple[int, ...], Tuple[int, ...], int, int]) -> None:
        filled, roots, current_root_index, next_index = state
        self._filled_subtrees = list(filled)
        self._roots = list(roots)
        self._current_root_index = current_root_index
        self._next_index = next_index


# ============================================================================
# REFERENCE (FULL-TREE) HELPERS
# ============================================================================


def _levels(
    leaves: Sequence[int], height: int, hasher: Hasher
) -> List[List[int]]:
    if len(leaves) > 2**height:
        raise TreeFull(f"{len(leaves)} leaves exceed capacity {2**height}")

    zeros = zero_hashes(height, hasher)
    levels = [[to_field_element(leaf, "leaf") for leaf in leaves]]
    for level in range(height):
        current_level = levels[-1]
        next_level = []
        for i in range(0, len(current_level), 2):
            left = current_level[i]
            # Missing right sibling is the empty subtree of this level
            right = current_level[i + 1] if i + 1 < len(current_level) else zeros[level]
            next_level.append(hasher(left, right))
        levels.append(next_level)
    return levels


def compute_root(
    leaves: Sequence[int],
    height: int = DEFAULT_TREE_HEIGHT,
    hasher: Hasher = hash_left_right,
) -> int:
    """
    Recompute the root of a tree holding ``leaves`` from scratch.

    Matches ``AnonymitySetTree.last_root`` after inserting the same leaves
    in the same order. Cost is linear in the number of leaves.
    """
    _validate_height(height)
    if not leaves:
        return zero_hashes(height, hasher)[height]
    return _levels(leaves, height, hasher)[-1][0]


def build_path(
    leaves: Sequence[int],
    index: int,
    height: int = DEFAULT_TREE_HEIGHT,
    hasher: Hasher = hash_left_right,
) -> List[Tuple[int, bool]]:
    """
    Authentication path for ``leaves[index]``.

    Returns:
        [(sibling, is_left), ...] from leaf level upward; ``is_left`` is
        True when the sibling sits on the left.
    """
    _validate_height(height)
    if not 0 <= index < len(leaves):
        raise IndexError(f"leaf index out of range: {index}")

    zeros = zero_hashes(height, hasher)
    levels = _levels(leaves, height, hasher)
    path: List[Tuple[int, bool]] = []
    position = index
    for level in range(height):
        nodes = levels[level]
        if position % 2 == 0:
            sibling = nodes[position + 1] if position + 1 < len(nodes) else zeros[level]
            path.append((sibling, False))
        else:
            path.append((nodes[position - 1], True))
        position //= 2
    return path


def verify_path(
    leaf: int,
    path: Sequence[Tuple[int, bool]],
    root: int,
    hasher: Hasher = hash_left_right,
) -> bool:
    """
    Verify a Merkle authentication path.

    Example:
        if verify_path(commitment, build_path(leaves, i, 20), root):
            print("Leaf is in tree")
    """
    current = leaf
    for sibling, is_left in path:
        if is_left:
            current = hasher(sibling, current)
        else:
            current = hasher(current, sibling)
    return current == root
