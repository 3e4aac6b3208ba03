"""Configuration value propagator for Actions variables and secrets."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Sequence, TypeVar

from ..errors import MalformedInputError, NotFoundError
from ..sealing import seal_secret

if TYPE_CHECKING:
    from ..github.client import GitHubClient, RepoRef
    from .models import ConfigSecret, ConfigVariable, SealedSecret

logger = logging.getLogger(__name__)

T = TypeVar("T")


def upsert(update: Callable[[], None], create: Callable[[], None]) -> bool:
    """Try `update`; fall back to `create` only when the resource does not exist.

    Returns:
        True if the resource was created, False if it was updated
    """
    try:
        update()
        return False
    except NotFoundError:
        create()
        return True


class ConfigPropagator:
    """
    Applies repository variables and secrets.

    Items are independent of each other and are applied concurrently; the first
    failure is re-raised unchanged once every submitted item has finished.
    """

    def __init__(
        self,
        client: "GitHubClient",
        max_workers: int = 4,
        sealer: Callable[["ConfigSecret", str, str], "SealedSecret"] = seal_secret,
    ):
        self.client = client
        self.max_workers = max(1, max_workers)
        self._seal = sealer

    def propagate_variables(self, repo: "RepoRef", variables: Sequence["ConfigVariable"]) -> int:
        """Upsert every variable, including ones with an empty value. Returns how many were applied."""

        def apply(variable: "ConfigVariable") -> None:
            created = upsert(
                lambda: self.client.update_variable(repo, variable.name, variable.value),
                lambda: self.client.create_variable(repo, variable.name, variable.value),
            )
            logger.info("   %s variable %s", "Created" if created else "Updated", variable.name)

        self._apply_all(apply, variables)
        return len(variables)

    def propagate_secrets(self, repo: "RepoRef", secrets: Sequence["ConfigSecret"]) -> int:
        """Seal and upsert every non-empty secret. Returns how many were applied."""
        pending = [secret for secret in secrets if not secret.is_empty]
        for skipped in secrets:
            if skipped.is_empty:
                logger.warning("   Skipping secret %s: empty value", skipped.name)
        if not pending:
            return 0

        # 公钥可能轮换，每次 attempt 都重新获取，不做缓存
        public_key = self.client.get_secrets_public_key(repo) or {}
        if not public_key.get("key") or not public_key.get("key_id"):
            raise MalformedInputError(
                f"Secrets public key response for {repo} is missing 'key' or 'key_id'"
            )

        def apply(secret: "ConfigSecret") -> None:
            sealed = self._seal(secret, public_key["key"], public_key["key_id"])
            self.put_sealed(repo, sealed)
            logger.info("   Stored secret %s", secret.name)

        self._apply_all(apply, pending)
        return len(pending)

    def put_sealed(self, repo: "RepoRef", sealed: "SealedSecret") -> None:
        # PUT 本身就是 upsert，create 分支与 update 相同
        def write() -> None:
            self.client.put_secret(repo, sealed.name, sealed.ciphertext, sealed.recipient_key_id)

        upsert(write, write)

    def _apply_all(self, apply: Callable[[T], None], items: Iterable[T]) -> None:
        items = list(items)
        if not items:
            return
        if len(items) == 1 or self.max_workers == 1:
            for item in items:
                apply(item)
            return

        first_error: Optional[BaseException] = None
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(items))) as pool:
            futures: List = [pool.submit(apply, item) for item in items]
            for future in futures:
                error = future.exception()
                if error is not None and first_error is None:
                    first_error = error
        if first_error is not None:
            raise first_error
