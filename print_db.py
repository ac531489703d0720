"""Print every chat session stored in the project's SQLite database.

Sessions are listed most recently active first, each followed by its
transcript in order. Image data URIs are replaced by a short marker so the
output stays readable. The script reuses the same `DATABASE_DIR` behavior as
the application via `utils.database_init.AsyncDatabaseInitializer`.

Run: set the `DATABASE_DIR` environment variable and run `python print_db.py`.
"""
import asyncio
from typing import List, Optional, Sequence

from dal.video_session_dal import VideoSessionDAL
from models.session_models import Session, Turn
from services.conversation_store import ConversationStore
from utils.database_init import AsyncDatabaseInitializer
from utils.media_validation import is_image_data_uri


def _display(value: Optional[str]) -> str:
    """Return `value` with image payloads collapsed to `[image N bytes]`."""
    if value is None:
        return ""
    if is_image_data_uri(value):
        return f"[image {len(value)} bytes]"
    return value.strip()


def format_session_transcript(session: Session, turns: Sequence[Turn]) -> str:
    """Render one session and its turns as plain text.

    Args:
        session: The session row.
        turns: Its turns, oldest first.

    Returns:
        A multi-line string ending without a trailing newline.
    """
    lines: List[str] = [f"Session {session.id}: {session.title!r} (updated {session.updated_at})"]
    if not turns:
        lines.append("  (no turns)")
    for turn in turns:
        lines.append(f"  [{turn.created_at}] {turn.role.value}: {_display(turn.content)}")
        if turn.visual_context:
            lines.append(f"      visual context: {_display(turn.visual_context)}")
    return "\n".join(lines)


async def main() -> None:
    """Ensure DB exists and print sessions, transcripts and video sessions."""
    initializer = AsyncDatabaseInitializer(reset=False)
    store = ConversationStore(initializer)
    for session in await store.list_sessions():
        turns = await store.list_turns(session.id)
        print(format_session_transcript(session, turns))
        print()

    records = await VideoSessionDAL(initializer).list()
    if records:
        print("Video sessions:")
        for record in records:
            print(f"  {record.conversation_id} [{record.status.value}] {record.conversation_url} session={record.session_id}")


if __name__ == "__main__":
    asyncio.run(main())
