import logging
from typing import List, Optional, Set, Tuple, TYPE_CHECKING

from arc_scores import ArcScores, ROOT_ID
from deptree import Arc, DependencyTree, Path
from schema import LatentSyntacticStructure

if TYPE_CHECKING:
  from labeler import DeprelAndPOSLabeler

logger = logging.getLogger(__name__)


class NoLegalGovernorError(RuntimeError):
  """a dependent detached from a cycle has no governor that keeps the graph acyclic."""


def assign_heads(tree: DependencyTree, scores: ArcScores) -> None:
  """
  greedy assembly: the dependent with the highest root score becomes the top (attached
  to the root), every other dependent takes its highest scoring governor.
  the result may contain cycles.
  """
  top_id, top_score = scores.find_highest_scoring_top()
  tree.set_attachment_score(top_id, top_score)

  for dependent_id in scores:
    if dependent_id == top_id:
      continue

    best = scores.find_highest_scoring_head(dependent_id, except_ids=[ROOT_ID])

    if best is None:
      # no candidate governors at all (e.g. a sentence of punctuation only)
      governor_id, score = top_id, 0.0
    else:
      governor_id, score = best

    tree.set_arc(dependent_id, governor_id, score=score, allow_cycle=True)


class CyclesFixer:
  """
  naive repair of the cycles of a dependency tree: in each cycle the lowest scoring arc
  is removed and its dependent is attached to the best governor among the elements not
  involved in cycles, provided the new arc does not close a cycle.

  with `until_fixpoint` the detection is repeated until no cycle is left.
  """

  def __init__(self, tree: DependencyTree, scores: ArcScores, until_fixpoint: bool = True):
    self.tree = tree
    self.scores = scores
    self.until_fixpoint = until_fixpoint
    self.direct_elements: Set[int] = set()

  def fix_cycles(self) -> int:
    """returns the number of repaired cycles."""
    fixed = 0

    while True:
      cycles = self.tree.get_cycles()
      if not cycles:
        break

      self._set_direct_elements(cycles)

      for cycle in cycles:
        self._fix_cycle(cycle)
      fixed += len(cycles)

      if not self.until_fixpoint:
        break

    if fixed:
      logger.debug("fixed %d cycles", fixed)
    return fixed

  def _set_direct_elements(self, cycles: List[Path]) -> None:
    in_cycles = set(e for cycle in cycles for e in cycle.elements)
    self.direct_elements = set(self.tree.elements) - in_cycles

  def _fix_cycle(self, cycle: Path) -> None:
    dependent = self._remove_lowest_scoring_arc(cycle.arcs)
    governor, score = self._find_best_governor(dependent)
    self.tree.set_arc(dependent, governor, score=score)

  def _remove_lowest_scoring_arc(self, arcs: List[Arc]) -> int:
    """removes the weakest arc (the first one on ties), returns its dependent."""
    arc = min(arcs, key=lambda a: self.scores.get_score(a.dependent, a.governor))
    self.tree.remove_arc(arc.dependent, arc.governor)
    return arc.dependent

  def _find_best_governor(self, dependent: int) -> Tuple[int, float]:
    best: Optional[Tuple[int, float]] = None

    for governor, score in self.scores[dependent].items():
      if governor not in self.direct_elements:
        continue
      if self.tree.introduces_cycle(dependent, governor):
        continue
      if best is None or score > best[1]:
        best = (governor, score)

    if best is None:
      raise NoLegalGovernorError(
        f"no legal governor for element {dependent}: "
        f"candidates {sorted(k for k in self.scores[dependent] if k != ROOT_ID)}, "
        f"direct elements {sorted(self.direct_elements)}"
      )

    return best


def fix_cycles(tree: DependencyTree, scores: ArcScores, until_fixpoint: bool = True) -> int:
  return CyclesFixer(tree, scores, until_fixpoint=until_fixpoint).fix_cycles()


def build_dependency_tree(
  lss: LatentSyntacticStructure,
  scores: ArcScores,
  labeler: Optional["DeprelAndPOSLabeler"] = None,
  until_fixpoint: bool = True,
) -> DependencyTree:
  """assembles, repairs and (if a labeler is given) labels the tree of a sentence."""
  tree = DependencyTree(lss.size)

  assign_heads(tree, scores)
  fix_cycles(tree, scores, until_fixpoint=until_fixpoint)

  if labeler is not None:
    labeler.assign_labels(lss, tree)

  return tree
