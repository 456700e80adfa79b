import pickle
from typing import Any, AsyncIterator, Collection, Optional, Sequence, Tuple

from langchain_core.runnables import RunnableConfig
from langgraph.checkpoint.base import (
    ChannelVersions,
    Checkpoint,
    CheckpointMetadata,
    CheckpointTuple,
)
from langgraph.checkpoint.postgres.aio import AsyncPostgresSaver

from config.onboarding import DEFAULT_ENCRYPT_KEYS
from .crypto import ChannelCipher


def _aad(config: RunnableConfig) -> bytes:
    configurable = config.get("configurable", {})
    thread_id = configurable["thread_id"]
    checkpoint_ns = configurable.get("checkpoint_ns", "")
    return f"{thread_id}|{checkpoint_ns}|channel_values".encode("utf-8")


class EncryptedAsyncPostgresSaver(AsyncPostgresSaver):
    """
    Postgres checkpointer that stores selected channels of the submission
    graph (record, overrides, payload) as AES-GCM ciphertext, both in
    checkpoints and in pending writes.
    """

    def __init__(
        self,
        conn: Any,
        cipher: ChannelCipher,
        *,
        encrypt_keys: Collection[str] = DEFAULT_ENCRYPT_KEYS,
        **kwargs: Any,
    ) -> None:
        super().__init__(conn, **kwargs)
        self.cipher = cipher
        self.encrypt_keys = set(encrypt_keys)

    def _keys_for(self, config: RunnableConfig) -> set:
        return set(config.get("configurable", {}).get("encrypt_keys", self.encrypt_keys))

    def _seal(self, aad: bytes, channel: str, value: Any) -> dict:
        raw = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
        enc = self.cipher.encrypt_bytes(raw, aad + b"|" + channel.encode())
        return {"__enc__": enc, "__fmt__": "pickle"}

    def _open(self, aad: bytes, channel: str, value: Any) -> Any:
        if isinstance(value, dict) and "__enc__" in value:
            raw = self.cipher.decrypt_bytes(value["__enc__"], aad + b"|" + channel.encode())
            return pickle.loads(raw)
        return value

    async def aput(
        self,
        config: RunnableConfig,
        checkpoint: Checkpoint,
        metadata: CheckpointMetadata,
        new_versions: ChannelVersions,
    ) -> RunnableConfig:
        aad = _aad(config)
        encrypt_keys = self._keys_for(config)

        cp = dict(checkpoint)
        new_cv = {}
        for k, v in cp.get("channel_values", {}).items():
            if ChannelCipher.should_encrypt(k, encrypt_keys):
                new_cv[k] = self._seal(aad, k, v)
            else:
                new_cv[k] = v
        cp["channel_values"] = new_cv

        return await super().aput(config, cp, metadata, new_versions)

    async def aput_writes(
        self,
        config: RunnableConfig,
        writes: Sequence[Tuple[str, Any]],
        task_id: str,
        *args: Any,
        **kwargs: Any,
    ) -> None:
        aad = _aad(config)
        encrypt_keys = self._keys_for(config)
        sealed = [
            (channel, self._seal(aad, channel, value))
            if ChannelCipher.should_encrypt(channel, encrypt_keys)
            else (channel, value)
            for channel, value in writes
        ]
        await super().aput_writes(config, sealed, task_id, *args, **kwargs)

    def _decrypt_checkpoint(self, config: RunnableConfig, cp: dict) -> dict:
        cv = cp.get("channel_values", {})
        if not isinstance(cv, dict):
            return cp

        aad = _aad(config)
        new_cp = dict(cp)
        new_cp["channel_values"] = {k: self._open(aad, k, v) for k, v in cv.items()}
        return new_cp

    def _decrypt_tuple(self, t: CheckpointTuple) -> CheckpointTuple:
        aad = _aad(t.config)
        pending = t.pending_writes
        if pending:
            pending = [
                (task_id, channel, self._open(aad, channel, value))
                for task_id, channel, value in pending
            ]
        return t._replace(
            checkpoint=self._decrypt_checkpoint(t.config, t.checkpoint),
            pending_writes=pending,
        )

    async def aget_tuple(self, config: RunnableConfig) -> Optional[CheckpointTuple]:
        t = await super().aget_tuple(config)
        if t is None:
            return None
        return self._decrypt_tuple(t)

    async def alist(
        self, config: Optional[RunnableConfig], *args: Any, **kwargs: Any
    ) -> AsyncIterator[CheckpointTuple]:
        async for t in super().alist(config, *args, **kwargs):
            yield self._decrypt_tuple(t)
