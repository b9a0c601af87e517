"""Attachment descriptions for casts, saved back on the cast row."""

from castflow.core.errors import MissingDataError
from castflow.services import Services


async def get_cast_url_summaries(
    services: Services, cast_hash: str, urls: list[str], require_cast: bool = True
) -> list[str]:
    """Describe a cast's attachments, reusing descriptions stored on the cast.

    Args:
        services: Job services
        cast_hash: Hash of the cast the urls belong to
        urls: Attachment urls
        require_cast: Raise when the cast is unknown instead of describing anyway

    Returns:
        Descriptions of the attachments that could be described

    Raises:
        MissingDataError: If the cast is unknown and ``require_cast`` is set
    """
    if not urls:
        return []
    cast = await services.store.get_cast_by_hash(cast_hash)
    if cast is None:
        if require_cast:
            raise MissingDataError(f"Cast {cast_hash} not found")
        return await services.describer.fetch_url_summaries(urls)
    if cast.embed_summaries:
        return cast.embed_summaries
    summaries = await services.describer.fetch_url_summaries(urls)
    await services.store.save_cast_embed_summaries(cast.hash, summaries)
    return summaries
