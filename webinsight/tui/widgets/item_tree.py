"""Item tree widget: saved captures, newest first."""

from __future__ import annotations

from rich.text import Text
from textual.message import Message
from textual.widgets import Tree
from textual.widgets._tree import TreeNode

from webinsight.engine.models import ContentItem, ItemType

TYPE_ICONS: dict[ItemType, tuple[str, str]] = {
    ItemType.PAGE: ("▤", "cyan"),
    ItemType.SELECTION: ("❝", "blue"),
    ItemType.SCREENSHOT: ("▣", "magenta"),
    ItemType.PDF: ("▥", "yellow"),
    ItemType.GENERATED_ANALYSIS: ("✦", "green"),
}


class ItemTree(Tree[ContentItem]):
    """Flat list of the panel's cached items."""

    class DeleteRequested(Message):
        """Posted on Delete to remove the highlighted item."""

        def __init__(self, item: ContentItem) -> None:
            super().__init__()
            self.item = item

    BINDINGS = [
        ("enter", "select_cursor", "Details"),
        ("delete", "delete_selected", "Delete Item"),
    ]

    def __init__(self, **kwargs) -> None:
        super().__init__("Items", **kwargs)
        self.show_root = False
        self.guide_depth = 2

    def set_items(self, items: list[ContentItem]) -> None:
        highlighted = self.highlighted_item
        self.clear()
        for item in items:
            self.root.add_leaf(item.title or f"Item {item.id}", data=item)
        if highlighted is not None:
            for node in self.root.children:
                if node.data is not None and node.data.id == highlighted.id:
                    self.move_cursor(node)
                    break

    @property
    def highlighted_item(self) -> ContentItem | None:
        node = self.cursor_node
        if node is None or node is self.root:
            return None
        return node.data

    def render_label(self, node: TreeNode[ContentItem], base_style, style) -> Text:
        item = node.data
        if item is None:
            return super().render_label(node, base_style, style)
        icon, color = TYPE_ICONS.get(item.type, ("?", "white"))
        label = Text()
        label.append(f"{icon} ", style=color)
        label.append(item.title or f"Item {item.id}")
        if item.word_count:
            label.append(f"  {item.word_count}w", style="dim")
        label.stylize(style)
        return label

    def action_delete_selected(self) -> None:
        item = self.highlighted_item
        if item is not None:
            self.post_message(self.DeleteRequested(item))
