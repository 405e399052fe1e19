from typing import Iterable, Optional, Tuple

# governor id of the virtual root, outside the range of the token ids
ROOT_ID = -1


class ArcScores(dict):
  """
  scores of the candidate arcs, mapped by dependent id and then by governor id
  (ROOT_ID for the attachment to the virtual root).
  every dependent must have a ROOT_ID entry. scores are not normalized per row.
  """

  def get_score(self, dependent_id: int, governor_id: int) -> float:
    try:
      return self[dependent_id][governor_id]
    except KeyError:
      raise KeyError(f"missing score for the arc {dependent_id} -> {governor_id}") from None

  def find_highest_scoring_top(self) -> Tuple[int, float]:
    """the dependent with the highest root score (first one on ties)."""
    top_id: Optional[int] = None
    top_score = 0.0

    for dependent_id, heads in self.items():
      if ROOT_ID not in heads:
        raise KeyError(f"missing root score for dependent {dependent_id}")

      if top_id is None or heads[ROOT_ID] > top_score:
        top_id, top_score = dependent_id, heads[ROOT_ID]

    if top_id is None:
      raise ValueError("cannot find the top of empty arc scores")

    return top_id, top_score

  def find_highest_scoring_head(
    self, dependent_id: int, except_ids: Iterable[int] = ()
  ) -> Optional[Tuple[int, float]]:
    """the best governor of a dependent (first one on ties), None if there are no candidates."""
    excluded = set(except_ids)
    best: Optional[Tuple[int, float]] = None

    for governor_id, score in self[dependent_id].items():
      if governor_id in excluded:
        continue
      if best is None or score > best[1]:
        best = (governor_id, score)

    return best
