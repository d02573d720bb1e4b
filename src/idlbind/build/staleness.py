"""Staleness evaluation for generated bindings.

Decides, from modification times alone, how much work a target needs:

    binding missing                 -> REBUILD_BINDINGS_ONLY  (first generation)
    config newer than binding       -> REBUILD_ALL            (config changes how bindings are made)
    description newer than binding  -> REBUILD_BINDINGS_ONLY
    otherwise                       -> NO_OP

The configuration check comes first: a config change is a superset of a
description change.
"""

import logging
from pathlib import Path

from . import timestamps
from .models import BuildTarget, StalenessVerdict

logger = logging.getLogger(__name__)


def evaluate(config_file: Path, description_file: Path, binding_file: Path) -> StalenessVerdict:
    """Classify the rebuild scope for one target.

    Pure function of three timestamps and one existence check. A missing
    config or description file counts as "not newer".

    Args:
        config_file: Build-configuration file
        description_file: Interface-description file
        binding_file: Previously generated binding artifact

    Returns:
        The StalenessVerdict for this target
    """
    if not timestamps.exists(binding_file):
        verdict = StalenessVerdict.REBUILD_BINDINGS_ONLY
        logger.debug("No binding at %s: %s", binding_file, verdict.value)
        return verdict

    if timestamps.is_newer(config_file, binding_file):
        verdict = StalenessVerdict.REBUILD_ALL
    elif timestamps.is_newer(description_file, binding_file):
        verdict = StalenessVerdict.REBUILD_BINDINGS_ONLY
    else:
        verdict = StalenessVerdict.NO_OP

    logger.debug("Staleness of %s: %s", binding_file, verdict.value)
    return verdict


def evaluate_target(target: BuildTarget) -> StalenessVerdict:
    return evaluate(target.config_file, target.description_file, target.binding_file)
