import random

import pytest

from dillnet.rbtree import RBNode, RBTree


def test_new_tree_is_empty():
    tree = RBTree()
    assert tree.empty() is True
    assert tree.first() is None
    assert len(tree) == 0
    assert list(tree) == []


def test_source_case_insert_iterate_erase():
    tree = RBTree()
    assert tree.empty()
    items = [object() for _ in range(10)]
    nodes = [tree.insert(i, items[i]) for i in range(10)]

    visited = [node.item for node in tree]
    assert visited == items
    assert len(visited) == 10

    for index in (0, 4, 5, 9):
        tree.erase(nodes[index])
    assert not tree.empty()

    count = 0
    it = tree.first()
    while it is not None:
        it = tree.next(it)
        count += 1
    assert count == 6
    assert [node.value for node in tree] == [1, 2, 3, 6, 7, 8]


def test_insert_returns_node_with_value_and_item():
    tree = RBTree()
    node = tree.insert(42, "payload")
    assert isinstance(node, RBNode)
    assert node.value == 42
    assert node.item == "payload"
    assert tree.first() is node
    assert tree.next(node) is None


def test_unsorted_inserts_come_out_sorted():
    tree = RBTree()
    values = [5, -3, 17, 0, 8, 8, 2, -10, 99, 1]
    for value in values:
        tree.insert(value, str(value))
    assert [node.value for node in tree] == sorted(values)
    assert len(tree) == len(values)


def test_erase_everything_leaves_empty_tree():
    tree = RBTree()
    nodes = [tree.insert(v) for v in (3, 1, 2)]
    for node in nodes:
        tree.erase(node)
    assert tree.empty()
    assert tree.first() is None
    assert len(tree) == 0


def _check_red_black(tree):
    nil = tree._nil
    top = tree._root.left
    assert not top.red

    def black_height(node):
        if node is nil:
            return 1
        if node.red:
            assert not node.left.red and not node.right.red
        if node.left is not nil:
            assert node.left.up is node
            assert node.left.value <= node.value
        if node.right is not nil:
            assert node.right.up is node
            assert node.right.value >= node.value
        left = black_height(node.left)
        right = black_height(node.right)
        assert left == right
        return left + (0 if node.red else 1)

    black_height(top)


@pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
def test_random_operations_keep_invariants(seed):
    rng = random.Random(seed)
    tree = RBTree()
    live = []
    for _ in range(400):
        if live and rng.random() < 0.4:
            node = live.pop(rng.randrange(len(live)))
            tree.erase(node)
        else:
            live.append(tree.insert(rng.randint(-50, 50), None))
        _check_red_black(tree)
        assert len(tree) == len(live)
        assert [n.value for n in tree] == sorted(n.value for n in live)
    assert {id(n) for n in tree} == {id(n) for n in live}