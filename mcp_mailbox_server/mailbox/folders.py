import re
from dataclasses import dataclass

from mcp_mailbox_server.log import logger
from mcp_mailbox_server.mailbox.errors import MailboxError
from mcp_mailbox_server.mailbox.models import FolderEntry, FolderNode
from mcp_mailbox_server.mailbox.selector import describe_response
from mcp_mailbox_server.mailbox.session import Session

_LIST_RE = re.compile(r'^\(([^)]*)\)\s+(?:"((?:[^"\\]|\\.)*)"|(NIL))\s+(.+)$', re.IGNORECASE)


@dataclass
class ListEntry:
    """One line of a LIST response"""

    name: str
    delimiter: str | None
    flags: list[str]


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        value = value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return value


def parse_list_line(line: bytes | str) -> ListEntry | None:
    """Parse a single IMAP LIST response line.

    IMAP LIST response format: (flags) "delimiter" name
    Example: (\\HasNoChildren \\Sent) "/" "Sent"

    The delimiter may be ``NIL`` for flat namespaces and the name may or may
    not be quoted.
    """
    text = line.decode("utf-8", errors="replace") if isinstance(line, bytes | bytearray) else str(line)
    text = text.strip()

    # Completion lines ("LIST completed.") have no flags and fail the match below
    if not text:
        return None

    match = _LIST_RE.match(text)
    if not match:
        logger.debug(f"Could not parse folder line: {text}")
        return None

    flags_str, delimiter, _nil, name = match.groups()
    if delimiter is not None:
        delimiter = delimiter.replace("\\\\", "\\")
    flags = [f.strip() for f in flags_str.split() if f.strip()]
    return ListEntry(name=_unquote(name), delimiter=delimiter or None, flags=flags)


def build_folder_tree(entries: list[ListEntry]) -> list[FolderNode]:
    """Arrange flat LIST entries into a hierarchy.

    Siblings keep the order the server reported them in. A parent that the
    server did not list itself (e.g. ``\\NoSelect`` containers on some
    servers) is created without flags.
    """
    roots: list[FolderNode] = []
    by_path: dict[str, FolderNode] = {}

    for entry in entries:
        parts = entry.name.split(entry.delimiter) if entry.delimiter else [entry.name]
        siblings = roots
        path = ""
        node = None
        for depth, part in enumerate(parts):
            path = f"{path}{entry.delimiter}{part}" if path else part
            node = by_path.get(path)
            if node is None:
                node = FolderNode(name=part, path=path, delimiter=entry.delimiter)
                by_path[path] = node
                siblings.append(node)
            if depth == len(parts) - 1:
                node.flags = entry.flags
            siblings = node.children

    return roots


def flatten_folders(roots: list[FolderNode]) -> list[FolderEntry]:
    """Walk the tree depth-first, parents before children, into ``{name, path}`` entries.

    Each entry's path is its parent's path, the node's own delimiter and its
    name; top-level entries use the bare name.
    """
    flattened: list[FolderEntry] = []
    stack: list[tuple[FolderNode, str]] = [(node, "") for node in reversed(roots)]

    while stack:
        node, parent_path = stack.pop()
        delimiter = node.delimiter or ""
        path = f"{parent_path}{delimiter}{node.name}" if parent_path else node.name
        flattened.append(FolderEntry(name=node.name, path=path))
        stack.extend((child, path) for child in reversed(node.children))

    return flattened


class FolderTree:
    """Reads the folder hierarchy of an account."""

    def __init__(self, session: Session):
        self.session = session

    async def list_nodes(self) -> list[FolderNode]:
        result, lines = await self.session.imap.list('""', "*")
        if result != "OK":
            msg = f"LIST failed: {describe_response(lines)}"
            raise MailboxError(msg)

        entries = [entry for entry in (parse_list_line(line) for line in lines) if entry]
        logger.info(f"Found {len(entries)} folders")
        return build_folder_tree(entries)

    async def list_entries(self) -> list[FolderEntry]:
        return flatten_folders(await self.list_nodes())
