"""A red-black tree keyed by integer values, ordered from lowest to highest."""

from __future__ import annotations

__all__ = ["RBNode", "RBTree"]


class RBNode:
    """A node of an :class:`RBTree`, carrying a sort value and a payload."""

    __slots__ = ("value", "item", "red", "left", "right", "up")

    def __init__(self, value=0, item=None):
        self.value = value
        self.item = item
        self.red = False
        self.left = None
        self.right = None
        self.up = None

    def __repr__(self):
        return f"RBNode(value={self.value!r}, item={self.item!r})"


class RBTree:
    """Red-black tree; nodes with equal values come out in no set order."""

    def __init__(self):
        nil = RBNode()
        nil.up = nil.left = nil.right = nil
        root = RBNode()
        root.up = root.left = root.right = nil
        self._nil = nil
        self._root = root
        self._size = 0

    def _rotate_left(self, x):
        nil = self._nil
        y = x.right
        x.right = y.left
        if y.left is not nil:
            y.left.up = x
        y.up = x.up
        if x is x.up.left:
            x.up.left = y
        else:
            x.up.right = y
        y.left = x
        x.up = y

    def _rotate_right(self, y):
        nil = self._nil
        x = y.left
        y.left = x.right
        if x.right is not nil:
            x.right.up = y
        x.up = y.up
        if y is y.up.left:
            y.up.left = x
        else:
            y.up.right = x
        x.right = y
        y.up = x

    def _insert_plain(self, z):
        nil = self._nil
        z.left = z.right = nil
        y = self._root
        x = self._root.left
        while x is not nil:
            y = x
            x = x.left if x.value > z.value else x.right
        z.up = y
        if y is self._root or y.value > z.value:
            y.left = z
        else:
            y.right = z

    def insert(self, value, item=None):
        """Insert ``item`` under ``value``; return the node that holds it."""
        x = node = RBNode(value, item)
        self._insert_plain(x)
        x.red = True
        while x.up.red:
            if x.up is x.up.up.left:
                y = x.up.up.right
                if y.red:
                    x.up.red = False
                    y.red = False
                    x.up.up.red = True
                    x = x.up.up
                else:
                    if x is x.up.right:
                        x = x.up
                        self._rotate_left(x)
                    x.up.red = False
                    x.up.up.red = True
                    self._rotate_right(x.up.up)
            else:
                y = x.up.up.left
                if y.red:
                    x.up.red = False
                    y.red = False
                    x.up.up.red = True
                    x = x.up.up
                else:
                    if x is x.up.left:
                        x = x.up
                        self._rotate_right(x)
                    x.up.red = False
                    x.up.up.red = True
                    self._rotate_left(x.up.up)
        self._root.left.red = False
        self._size += 1
        return node

    def empty(self):
        """True if the tree holds no nodes."""
        return self._root.left is self._nil

    def first(self):
        """Return the node with the lowest value, or None if the tree is empty."""
        nil = self._nil
        x = self._root.left
        if x is nil:
            return None
        while x.left is not nil:
            x = x.left
        return x

    def _successor(self, x):
        nil = self._nil
        y = x.right
        if y is not nil:
            while y.left is not nil:
                y = y.left
            return y
        y = x.up
        while x is y.right:
            x = y
            y = y.up
        if y is self._root:
            return nil
        return y

    def next(self, node):
        """Return the node following ``node``, or None after the last one."""
        successor = self._successor(node)
        return None if successor is self._nil else successor

    def _fixup(self, x):
        root = self._root.left
        while not x.red and x is not root:
            if x is x.up.left:
                w = x.up.right
                if w.red:
                    w.red = False
                    x.up.red = True
                    self._rotate_left(x.up)
                    w = x.up.right
                if not w.right.red and not w.left.red:
                    w.red = True
                    x = x.up
                else:
                    if not w.right.red:
                        w.left.red = False
                        w.red = True
                        self._rotate_right(w)
                        w = x.up.right
                    w.red = x.up.red
                    x.up.red = False
                    w.right.red = False
                    self._rotate_left(x.up)
                    x = root
            else:
                w = x.up.left
                if w.red:
                    w.red = False
                    x.up.red = True
                    self._rotate_right(x.up)
                    w = x.up.left
                if not w.right.red and not w.left.red:
                    w.red = True
                    x = x.up
                else:
                    if not w.left.red:
                        w.right.red = False
                        w.red = True
                        self._rotate_left(w)
                        w = x.up.left
                    w.red = x.up.red
                    x.up.red = False
                    w.left.red = False
                    self._rotate_right(x.up)
                    x = root
        x.red = False

    def erase(self, node):
        """Remove ``node`` from the tree."""
        nil = self._nil
        root = self._root
        z = node
        y = z if (z.left is nil or z.right is nil) else self._successor(z)
        x = y.right if y.left is nil else y.left
        x.up = y.up
        if root is x.up:
            root.left = x
        elif y is y.up.left:
            y.up.left = x
        else:
            y.up.right = x
        if y is not z:
            if not y.red:
                self._fixup(x)
            y.left = z.left
            y.right = z.right
            y.up = z.up
            y.red = z.red
            z.left.up = y
            z.right.up = y
            if z is z.up.left:
                z.up.left = y
            else:
                z.up.right = y
        elif not y.red:
            self._fixup(x)
        self._size -= 1

    def __iter__(self):
        node = self.first()
        while node is not None:
            yield node
            node = self.next(node)

    def __len__(self):
        return self._size