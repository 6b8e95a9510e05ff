"""Helpers for choosing where a new database should live."""

from tracker2notion.models import PageNode, RemoteItem


def _is_root(item: RemoteItem) -> bool:
    return (item.parent or {}).get("type") == "workspace"


def _parent_page_id(item: RemoteItem) -> str | None:
    parent = item.parent or {}
    if parent.get("type") == "page_id":
        return parent.get("page_id")
    return None


def build_page_tree(items: list[RemoteItem]) -> list[PageNode]:
    """
    Arrange search hits into the workspace page hierarchy.

    Only pages are kept (a database can't be the parent of a new database).
    Roots are workspace-level pages; pages whose parent wasn't returned by
    the search are unreachable and left out.
    """
    pages = [item for item in items if item.kind == "page"]
    children: dict[str, list[RemoteItem]] = {}
    for page in pages:
        parent_id = _parent_page_id(page)
        if parent_id:
            children.setdefault(parent_id, []).append(page)

    def build(item: RemoteItem, level: int, ancestors: frozenset[str]) -> PageNode:
        # Guard against parent cycles in malformed data
        kids = [c for c in children.get(item.id, []) if c.id not in ancestors]
        return PageNode(
            item=item,
            level=level,
            children=[build(child, level + 1, ancestors | {child.id}) for child in kids],
        )

    return [build(page, 0, frozenset({page.id})) for page in pages if _is_root(page)]


def flatten_page_tree(nodes: list[PageNode]) -> list[PageNode]:
    """Depth-first list of every node."""
    result: list[PageNode] = []

    def traverse(node: PageNode) -> None:
        result.append(node)
        for child in node.children:
            traverse(child)

    for node in nodes:
        traverse(node)
    return result


def page_path(nodes: list[PageNode], page_id: str) -> list[PageNode]:
    """Nodes from a root down to ``page_id``, or [] when it isn't in the tree."""
    for node in nodes:
        if node.item.id == page_id:
            return [node]
        path = page_path(node.children, page_id)
        if path:
            return [node, *path]
    return []
