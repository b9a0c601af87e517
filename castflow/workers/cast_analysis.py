"""Grant-update classification of a single cast."""

from castflow.cache.keys import CAST_ANALYSIS_PREFIX
from castflow.core.errors import DataIntegrityError
from castflow.llm.prompts import (
    GRANT_UPDATE_PROMPT_VERSION,
    grant_update_analysis_messages,
    grant_update_classification_messages,
)
from castflow.models.analysis import CastAnalysis, GrantUpdateClassification
from castflow.models.domain import Grant, ImpactVerification
from castflow.models.jobs import IsGrantUpdateJobBody
from castflow.queue.context import JobContext
from castflow.services import Services
from castflow.workers.attachments import get_cast_url_summaries

CAST_HASH_LENGTH = 42


def validate_grant_id(verdict: GrantUpdateClassification, grants: list[Grant]) -> None:
    """Ensure the model attributed the cast to one of the builder's grants.

    Raises:
        DataIntegrityError: If the grant id is unknown, or missing on an update
    """
    grant_ids = {grant.id for grant in grants}
    if verdict.grant_id and verdict.grant_id not in grant_ids:
        raise DataIntegrityError(
            f"Grant {verdict.grant_id} is not one of the builder's grants"
        )
    if verdict.is_grant_update and not verdict.grant_id:
        raise DataIntegrityError("Grant update without a grant id")


async def save_impact_verification(
    services: Services, cast_hash: str, analysis: CastAnalysis, model: str
) -> None:
    """Record the verdict on the cast, replacing an earlier one for the same key.

    Raises:
        DataIntegrityError: If the cast hash is not a full 20-byte hex hash
    """
    if len(cast_hash) != CAST_HASH_LENGTH:
        raise DataIntegrityError(f"Invalid cast hash: {cast_hash}")
    await services.store.replace_cast_impact_verification(
        cast_hash,
        ImpactVerification(
            model=model,
            score=analysis.confidence_score,
            reason=analysis.reason,
            is_grant_update=analysis.is_grant_update,
            prompt_version=GRANT_UPDATE_PROMPT_VERSION,
            grant_id=analysis.grant_id,
        ),
    )


async def analyze_cast(
    services: Services,
    item: IsGrantUpdateJobBody,
    grants: list[Grant],
    context: JobContext,
) -> CastAnalysis:
    """Decide whether a cast is an update on one of the builder's grants.

    Cached analyses are returned as-is; fresh ones are cached and written to
    the cast's impact verifications.
    """
    cached = await services.cache.get_cached_model(
        item.cast_hash, CAST_ANALYSIS_PREFIX, CastAnalysis
    )
    if cached is not None:
        context.log("Using cached cast analysis", cast_hash=item.cast_hash)
        return cached

    summaries = await get_cast_url_summaries(
        services, item.cast_hash, item.urls, require_cast=False
    )
    builder_profile = await services.store.get_builder_profile(item.builder_fid)
    models = services.settings.default_models

    analysis_text = await services.llm.generate_text(
        grant_update_analysis_messages(
            item.cast_content,
            summaries,
            grants,
            builder_profile.content if builder_profile else None,
        ),
        models=models,
        temperature=0,
        max_tokens=1500,
        context=f"analyze-cast:{item.cast_hash}",
    )
    verdict = await services.llm.generate_object(
        grant_update_classification_messages(analysis_text, grants),
        GrantUpdateClassification,
        models=models,
        context=f"classify-cast:{item.cast_hash}",
    )
    validate_grant_id(verdict, grants)

    analysis = CastAnalysis(
        cast_hash=item.cast_hash,
        grant_id=verdict.grant_id,
        is_grant_update=verdict.is_grant_update,
        reason=verdict.reason,
        confidence_score=verdict.confidence_score,
        should_request_more_info=verdict.should_request_more_info,
    )
    await services.cache.set_cached_result(item.cast_hash, CAST_ANALYSIS_PREFIX, analysis)
    await save_impact_verification(services, item.cast_hash, analysis, models[0])
    context.log(
        "Analyzed cast",
        cast_hash=item.cast_hash,
        is_grant_update=analysis.is_grant_update,
        grant_id=analysis.grant_id,
    )
    return analysis
