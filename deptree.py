import bisect
from typing import List, NamedTuple, Optional, Sequence


class CycleError(ValueError):
  """raised when an arc would close a cycle and cycles are not allowed."""


class Arc(NamedTuple):
  """a directed edge dependent -> governor."""

  dependent: int
  governor: int


class Path(NamedTuple):
  """a sequence of arcs, each governor being the dependent of the next arc."""

  arcs: List[Arc]

  @property
  def elements(self) -> List[int]:
    return [arc.dependent for arc in self.arcs]


class DependencyTree:
  """
  mutable dependency graph over the token ids 0..size-1.

  invariants:
  - every dependent has at most one head (None = attached to the virtual root)
  - left/right dependents are sorted and always consistent with `heads`
  - the attachment score of a dependent is stored with its arc
  the graph may transiently contain cycles (see `set_arc(allow_cycle=True)`).
  """

  def __init__(self, size: int):
    if size < 1:
      raise ValueError(f"a dependency tree needs at least one element, got {size}")

    self.size = size
    self.heads: List[Optional[int]] = [None] * size
    self.attachment_scores: List[float] = [0.0] * size
    self.deprels: List[Optional[str]] = [None] * size
    self.pos_tags: List[Optional[str]] = [None] * size
    self.left_dependents: List[List[int]] = [[] for _ in range(size)]
    self.right_dependents: List[List[int]] = [[] for _ in range(size)]

  @classmethod
  def from_heads(
    cls,
    heads: Sequence[Optional[int]],
    deprels: Optional[Sequence[Optional[str]]] = None,
    pos_tags: Optional[Sequence[Optional[str]]] = None,
  ) -> "DependencyTree":
    """builds an acyclic tree from a heads array (None = root), e.g. a gold annotation."""
    tree = cls(len(heads))

    for dependent, governor in enumerate(heads):
      if governor is not None:
        tree.set_arc(dependent, governor)

    for i, deprel in enumerate(deprels or []):
      tree.set_deprel(i, deprel)

    for i, pos in enumerate(pos_tags or []):
      tree.set_pos_tag(i, pos)

    return tree

  def __len__(self) -> int:
    return self.size

  def __repr__(self) -> str:
    return f"DependencyTree(heads={self.heads}, deprels={self.deprels})"

  @property
  def elements(self) -> range:
    return range(self.size)

  @property
  def roots(self) -> List[int]:
    """the elements without a head."""
    return [i for i, head in enumerate(self.heads) if head is None]

  def set_arc(
    self, dependent: int, governor: int, score: float = 0.0, allow_cycle: bool = False
  ) -> None:
    """
    attaches `dependent` to `governor`, replacing its current head if any.
    raises CycleError if the arc closes a cycle and `allow_cycle` is False.
    """
    self._check_id(dependent)
    self._check_id(governor)

    if dependent == governor:
      raise ValueError(f"self-loop on element {dependent}")

    if not allow_cycle and self.introduces_cycle(dependent, governor):
      raise CycleError(f"the arc {dependent} -> {governor} introduces a cycle")

    current = self.heads[dependent]
    if current is not None:
      self.remove_arc(dependent, current)

    self.heads[dependent] = governor
    self.attachment_scores[dependent] = score

    side = self.left_dependents if dependent < governor else self.right_dependents
    bisect.insort(side[governor], dependent)

  def remove_arc(self, dependent: int, governor: int) -> None:
    """detaches `dependent` from `governor`, leaving it without a head."""
    self._check_id(dependent)

    if self.heads[dependent] != governor:
      raise ValueError(
        f"no arc {dependent} -> {governor} (current head: {self.heads[dependent]})"
      )

    side = self.left_dependents if dependent < governor else self.right_dependents
    side[governor].remove(dependent)

    self.heads[dependent] = None
    self.attachment_scores[dependent] = 0.0

  def set_attachment_score(self, dependent: int, score: float) -> None:
    self._check_id(dependent)
    self.attachment_scores[dependent] = score

  def set_deprel(self, dependent: int, deprel: Optional[str]) -> None:
    self._check_id(dependent)
    self.deprels[dependent] = deprel

  def set_pos_tag(self, element: int, pos_tag: Optional[str]) -> None:
    self._check_id(element)
    self.pos_tags[element] = pos_tag

  def leftmost_child(self, element: int) -> Optional[int]:
    deps = self.left_dependents[element]
    return deps[0] if deps else None

  def rightmost_child(self, element: int) -> Optional[int]:
    deps = self.right_dependents[element]
    return deps[-1] if deps else None

  def introduces_cycle(self, dependent: int, governor: int) -> bool:
    """
    whether the arc dependent -> governor would close a cycle, i.e. the dependent
    is reachable going up from the governor. safe on graphs that already contain cycles.
    """
    visited = set()
    node: Optional[int] = governor

    while node is not None and node not in visited:
      if node == dependent:
        return True
      visited.add(node)
      node = self.heads[node]

    return False

  def get_cycles(self) -> List[Path]:
    """
    enumerates the simple cycles of the graph. every element has at most one head, so
    each cycle is found by walking up the heads from the lowest unvisited element.
    """
    unvisited, on_walk, done = 0, 1, 2
    state = [unvisited] * self.size
    cycles: List[Path] = []

    for start in self.elements:
      if state[start] != unvisited:
        continue

      walk: List[int] = []
      node: Optional[int] = start

      while node is not None and state[node] == unvisited:
        state[node] = on_walk
        walk.append(node)
        node = self.heads[node]

      if node is not None and state[node] == on_walk:
        members = walk[walk.index(node) :]
        cycles.append(Path(arcs=[Arc(d, self.heads[d]) for d in members]))

      for element in walk:
        state[element] = done

    return cycles

  def is_tree(self) -> bool:
    """exactly one element attached to the root and no cycles."""
    return len(self.roots) == 1 and not self.get_cycles()

  def _check_id(self, element: int) -> None:
    if not 0 <= element < self.size:
      raise ValueError(f"element {element} out of range [0, {self.size})")
