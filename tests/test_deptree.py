import unittest

from deptree import Arc, CycleError, DependencyTree


class TestDependencyTree(unittest.TestCase):
  def test_from_heads(self):
    tree = DependencyTree.from_heads([1, None, 1], deprels=["nsubj", "root", "obj"])

    self.assertEqual(tree.heads, [1, None, 1])
    self.assertEqual(tree.roots, [1])
    self.assertEqual(tree.deprels, ["nsubj", "root", "obj"])
    self.assertEqual(tree.left_dependents[1], [0])
    self.assertEqual(tree.right_dependents[1], [2])
    self.assertTrue(tree.is_tree())

  def test_empty_tree(self):
    with self.assertRaises(ValueError):
      DependencyTree(0)

  def test_set_arc_replaces_the_head(self):
    tree = DependencyTree(3)
    tree.set_arc(0, 1, score=0.5)
    tree.set_arc(0, 2, score=0.7)

    self.assertEqual(tree.heads[0], 2)
    self.assertEqual(tree.attachment_scores[0], 0.7)
    self.assertEqual(tree.left_dependents[1], [])
    self.assertEqual(tree.left_dependents[2], [0])

  def test_self_loop(self):
    tree = DependencyTree(2)
    with self.assertRaises(ValueError):
      tree.set_arc(1, 1)

  def test_out_of_range(self):
    tree = DependencyTree(2)
    with self.assertRaises(ValueError):
      tree.set_arc(0, 2)

  def test_cycle_not_allowed(self):
    tree = DependencyTree(3)
    tree.set_arc(0, 1)
    tree.set_arc(1, 2)

    self.assertTrue(tree.introduces_cycle(2, 0))
    self.assertFalse(tree.introduces_cycle(0, 2))
    with self.assertRaises(CycleError):
      tree.set_arc(2, 0)

  def test_cycles(self):
    tree = DependencyTree(5)
    tree.set_arc(1, 0, allow_cycle=True)
    tree.set_arc(0, 1, allow_cycle=True)
    tree.set_arc(3, 2, allow_cycle=True)
    tree.set_arc(2, 3, allow_cycle=True)
    tree.set_arc(4, 0)

    cycles = tree.get_cycles()

    self.assertEqual(len(cycles), 2)
    self.assertEqual(cycles[0].arcs, [Arc(0, 1), Arc(1, 0)])
    self.assertEqual(cycles[1].elements, [2, 3])
    self.assertFalse(tree.is_tree())
    # still safe to query when cycles exist
    self.assertFalse(tree.introduces_cycle(4, 1))
    self.assertTrue(tree.introduces_cycle(0, 4))

  def test_remove_arc(self):
    tree = DependencyTree.from_heads([1, None])

    with self.assertRaises(ValueError):
      tree.remove_arc(0, None)

    tree.remove_arc(0, 1)
    self.assertEqual(tree.roots, [0, 1])
    self.assertEqual(tree.left_dependents[1], [])
    self.assertFalse(tree.is_tree())

  def test_children(self):
    tree = DependencyTree.from_heads([2, 2, None, 2, 2])

    self.assertEqual(tree.leftmost_child(2), 0)
    self.assertEqual(tree.rightmost_child(2), 4)
    self.assertIsNone(tree.leftmost_child(0))
    self.assertIsNone(tree.rightmost_child(4))


if __name__ == "__main__":
  unittest.main()
