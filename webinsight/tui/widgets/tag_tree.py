"""Tag tree widget: choosing a node filters the item list."""

from __future__ import annotations

from textual.message import Message
from textual.widgets import Tree

from webinsight.engine.models import Tag


class TagTree(Tree[Tag]):
    """Root node shows everything; each child filters by one tag."""

    class FilterChosen(Message):
        def __init__(self, tag: Tag | None) -> None:
            super().__init__()
            self.tag = tag

    def __init__(self, **kwargs) -> None:
        super().__init__("All items", data=None, **kwargs)
        self.show_root = True
        self.root.expand()

    def set_tags(self, tags: list[Tag], active: Tag | None = None) -> None:
        self.root.remove_children()
        for tag in tags:
            label = f"#{tag.name}"
            node = self.root.add_leaf(label, data=tag)
            if active is not None and tag.id == active.id:
                self.move_cursor(node)
        self.root.expand()

    def on_tree_node_selected(self, event: Tree.NodeSelected) -> None:
        event.stop()
        self.post_message(self.FilterChosen(event.node.data))
