"""
File-backed store of Google OAuth token sets, one entry per Telegram user.
"""
import os
import json
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

import aiofiles

logger = logging.getLogger(__name__)

UserId = Union[int, str]


class CredentialStore:
    """
    Persists all token sets in a single JSON document keyed by user id.

    Writes go to a temp file that is then renamed over the original, so a
    crash mid-write never leaves a truncated document behind.
    """

    def __init__(self, tokens_file: Union[str, Path]):
        self.tokens_file = Path(tokens_file)
        self.tokens_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    async def _read_all(self) -> Dict[str, dict]:
        if not self.tokens_file.exists():
            return {}
        async with aiofiles.open(self.tokens_file, 'r', encoding='utf-8') as f:
            raw = await f.read()
        if not raw.strip():
            return {}
        return json.loads(raw)

    async def _write_all(self, data: Dict[str, dict]) -> None:
        tmp_path = self.tokens_file.with_suffix(self.tokens_file.suffix + ".tmp")
        async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(data, indent=2))
        os.replace(tmp_path, self.tokens_file)

    async def save(self, user_id: UserId, token_set: dict) -> bool:
        """
        Store ``token_set`` for ``user_id``, replacing any previous entry.

        Returns:
            True on success, False if the document could not be written
        """
        key = str(user_id)
        async with self._lock:
            try:
                all_tokens = await self._read_all()
                all_tokens[key] = {
                    **token_set,
                    "saved_at": datetime.now(timezone.utc).isoformat(),
                    "user_id": key,
                }
                await self._write_all(all_tokens)
                logger.info(f"Saved credentials for user {key}")
                return True
            except (OSError, ValueError) as e:
                logger.error(f"❌ Error saving tokens for {key}: {e}")
                return False

    async def get(self, user_id: UserId) -> Optional[dict]:
        try:
            all_tokens = await self._read_all()
        except (OSError, ValueError) as e:
            logger.error(f"❌ Error reading tokens: {e}")
            return None
        return all_tokens.get(str(user_id))

    async def delete(self, user_id: UserId) -> bool:
        """Remove the entry for ``user_id``. Deleting a missing entry is fine."""
        key = str(user_id)
        async with self._lock:
            try:
                all_tokens = await self._read_all()
                if key in all_tokens:
                    del all_tokens[key]
                    await self._write_all(all_tokens)
                    logger.info(f"Deleted credentials for user {key}")
                return True
            except (OSError, ValueError) as e:
                logger.error(f"❌ Error deleting tokens for {key}: {e}")
                return False

    async def list_user_ids(self) -> List[str]:
        try:
            return list((await self._read_all()).keys())
        except (OSError, ValueError) as e:
            logger.error(f"❌ Error listing users: {e}")
            return []
