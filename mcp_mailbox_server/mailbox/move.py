from mcp_mailbox_server.log import logger
from mcp_mailbox_server.mailbox.errors import FolderNotFoundError, MoveError
from mcp_mailbox_server.mailbox.models import MoveResult
from mcp_mailbox_server.mailbox.selector import MailboxSelector, describe_response
from mcp_mailbox_server.mailbox.session import Session, quote_mailbox

_ALREADY_EXISTS_MARKERS = ("alreadyexists", "already exists")


def is_already_exists(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in _ALREADY_EXISTS_MARKERS)


class MoveCoordinator:
    """Moves a single message by UID with COPY, STORE \\Deleted and EXPUNGE.

    Steps and what happens when they fail:

    - create target: ignored if it exists, otherwise a warning
    - select source: MoveError, nothing changed
    - copy: MoveError, nothing changed
    - flag deleted: MoveError, the copy now exists in both folders
    - expunge: a warning, the move is still reported as successful
    """

    def __init__(self, session: Session):
        self.session = session
        self.selector = MailboxSelector(session)

    async def move(self, source_folder: str, uid: int | str, target_folder: str) -> MoveResult:
        imap = self.session.imap
        warnings: list[str] = []
        uid = str(uid)

        warning = await self._ensure_target(target_folder)
        if warning:
            warnings.append(warning)

        try:
            await self.selector.open(source_folder, readonly=False)
        except FolderNotFoundError as e:
            raise MoveError("select", str(e)) from e

        result, lines = await imap.uid("copy", uid, quote_mailbox(target_folder))
        if result != "OK":
            logger.error(f"Failed to copy message {uid} to {target_folder}: {describe_response(lines)}")
            raise MoveError("copy", describe_response(lines))

        result, lines = await imap.uid("store", uid, "+FLAGS", r"(\Deleted)")
        if result != "OK":
            logger.error(
                f"Message {uid} was copied to {target_folder} but could not be flagged deleted in {source_folder}"
            )
            raise MoveError("flag", describe_response(lines))

        expunge_error = None
        try:
            result, lines = await imap.expunge()
            if result != "OK":
                expunge_error = describe_response(lines)
        except Exception as e:
            expunge_error = str(e)
        if expunge_error is not None:
            logger.warning(f"Message {uid} moved but not expunged from {source_folder}: {expunge_error}")
            warnings.append(f"Expunge failed: {expunge_error}")

        logger.info(f"Moved message {uid} from {source_folder} to {target_folder}")
        return MoveResult(
            success=True,
            message=f"Message {uid} moved from {source_folder} to {target_folder}",
            warnings=warnings,
        )

    async def _ensure_target(self, target_folder: str) -> str | None:
        try:
            result, lines = await self.session.imap.create(quote_mailbox(target_folder))
        except Exception as e:
            logger.warning(f"Could not create folder {target_folder}: {e!s}")
            return f"Could not create folder {target_folder}: {e!s}"

        if result == "OK":
            logger.info(f"Created folder: {target_folder}")
            return None

        detail = describe_response(lines)
        if is_already_exists(detail):
            logger.debug(f"Folder {target_folder} already exists")
            return None

        logger.warning(f"Could not create folder {target_folder}: {detail}")
        return f"Could not create folder {target_folder}: {detail}"
