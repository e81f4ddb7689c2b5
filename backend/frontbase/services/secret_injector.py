"""
Repository secret injection.

GitHub only accepts Actions secrets encrypted with the repository's
libsodium public key (a sealed box: anyone can encrypt, only GitHub can
decrypt). We use it to hand the CI runner a repository-scoped token so the
runner can call back into this API.
"""

import base64
import logging

from nacl.public import PublicKey, SealedBox

from frontbase.services.github_service import GitHubClient

logger = logging.getLogger(__name__)


def seal_secret(public_key_b64: str, plaintext: str) -> str:
    """Encrypt `plaintext` for the holder of `public_key_b64`; returns base64."""
    public_key = PublicKey(base64.b64decode(public_key_b64))
    sealed = SealedBox(public_key).encrypt(plaintext.encode("utf-8"))
    return base64.b64encode(sealed).decode("ascii")


async def inject_secret(
    github: GitHubClient, owner: str, repo: str, name: str, plaintext: str
) -> None:
    """
    Store `plaintext` as the Actions secret `name` on owner/repo.

    Any failure (key lookup or PUT) propagates: a workflow without its
    callback token cannot deliver the build, so setup must stop here.
    """
    key_id, public_key = await github.get_secrets_public_key(owner, repo)
    encrypted_value = seal_secret(public_key, plaintext)
    await github.put_secret(owner, repo, name, encrypted_value, key_id)
    logger.info("Injected secret %s into %s/%s (key_id=%s)", name, owner, repo, key_id)
