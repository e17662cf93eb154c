from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from marksync.core.errors import MalformedBackupError

CLIENT_VERSION = "2.0.0-hash"


class TreeNode(BaseModel):
    """One bookmark (``url`` set) or folder (``url`` unset).

    Field aliases follow the JSON shape other clients of the shared store
    already write (``id``, ``parentId``, ``hash``, ``folderType``).
    """

    model_config = ConfigDict(populate_by_name=True)

    local_id: str | None = Field(default=None, alias="id")
    parent_id: str | None = Field(default=None, alias="parentId")
    index: int | None = None
    title: str = ""
    url: str | None = None
    children: list[TreeNode] | None = None
    content_hash: str | None = Field(default=None, alias="hash")
    role_tag: str | None = Field(default=None, alias="folderType")
    date_added: int | None = Field(default=None, alias="dateAdded")


TreeNode.model_rebuild()


class SnapshotMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: int
    client_version: str = Field(default=CLIENT_VERSION, alias="clientVersion")


class RemoteSnapshot(BaseModel):
    metadata: SnapshotMetadata
    data: list[TreeNode] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, text: str) -> RemoteSnapshot:
        try:
            return cls.model_validate_json(text)
        except ValueError as e:
            raise MalformedBackupError(f"backup_parse_failed: {e}") from e


def count_bookmarks(nodes: list[TreeNode] | None) -> int:
    total = 0
    for node in nodes or []:
        if node.url:
            total += 1
        if node.children:
            total += count_bookmarks(node.children)
    return total


def top_level_roots(tree: list[TreeNode]) -> list[TreeNode]:
    """Return the system roots of a tree, unwrapping the anonymous top root."""
    if len(tree) == 1 and not tree[0].url and tree[0].children is not None:
        return list(tree[0].children)
    return list(tree)
